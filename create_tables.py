from sqlalchemy import inspect

from database import DATABASE_URL, engine, init_db


def create_tables():
    """Create every table registered on Base (existing tables are left alone)"""
    init_db()
    tables = inspect(engine).get_table_names()
    print(f"Tables ready on {engine.url.render_as_string(hide_password=True)}: {', '.join(sorted(tables))}")


if __name__ == "__main__":
    print(f"Creating tables for {DATABASE_URL.split('@')[-1]}")
    create_tables()
