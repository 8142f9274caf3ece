# credit_ledger.py

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from config.constants import DEFAULT_PLAN, PLAN_CREDITS
from database import db_call, db_commit, db_execute, db_rollback
from errors import InsufficientCredits, InvalidInput, NotFound
from models import User, utcnow

logger = logging.getLogger(__name__)


class CreditLedger:
    """Per-user integer balance; every mutation is a single guarded UPDATE"""

    @staticmethod
    async def _load_user(db: Session, user_id: str) -> User:
        user = await db_call(db.get, User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    @staticmethod
    async def balance(db: Session, user_id: str) -> int:
        result = await db_execute(db, select(User.credits).where(User.id == user_id))
        value = result.scalar_one_or_none()
        if value is None:
            raise NotFound("User not found")
        return int(value)

    @staticmethod
    async def can_afford(db: Session, user: User, amount: int = 1) -> bool:
        """Read-only precheck; the charge itself stays authoritative"""
        if user.is_admin:
            return True
        return await CreditLedger.balance(db, user.id) >= amount

    @staticmethod
    async def charge(db: Session, user_id: str, amount: int = 1, commit: bool = True) -> int:
        """
        Atomic compare-and-decrement.

        UPDATE users SET credits = credits - :amount
         WHERE id = :user_id AND credits >= :amount

        Admins are never charged and never mutated. With commit=False the
        decrement joins the caller's transaction (job insert + charge commit
        together).

        Returns the new balance, raises InsufficientCredits when the guard fails.
        """
        if amount < 1:
            raise InvalidInput("Charge amount must be positive")

        user = await CreditLedger._load_user(db, user_id)
        if user.is_admin:
            logger.info(f"Admin {user_id} used {amount} credit(s) without charge")
            return int(user.credits or 0)

        stmt = (
            update(User)
            .where(User.id == user_id, User.credits >= amount)
            .values(credits=User.credits - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db_execute(db, stmt)
            if result.rowcount != 1:
                await db_rollback(db)
                balance = await CreditLedger.balance(db, user_id)
                logger.info(f"Charge of {amount} refused for user {user_id}: balance {balance}")
                raise InsufficientCredits(balance=balance)
            if commit:
                await db_commit(db)
        except InsufficientCredits:
            raise
        except Exception:
            await db_rollback(db)
            raise

        new_balance = await CreditLedger.balance(db, user_id)
        logger.info(f"Charged {amount} credit(s) to user {user_id}, balance now {new_balance}")
        return new_balance

    @staticmethod
    async def credit(db: Session, user_id: str, amount: int) -> int:
        """Increment the balance (external payment confirmation)"""
        if amount < 1:
            raise InvalidInput("Credit amount must be positive")

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(credits=func.coalesce(User.credits, 0) + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db_execute(db, stmt)
            if result.rowcount != 1:
                raise NotFound("User not found")
            await db_commit(db)
        except Exception:
            await db_rollback(db)
            raise

        new_balance = await CreditLedger.balance(db, user_id)
        logger.info(f"Credited {amount} to user {user_id}, balance now {new_balance}")
        return new_balance

    @staticmethod
    def credits_for_plan(plan: Optional[str]) -> int:
        """Unknown or missing plans fall back to the default plan amount"""
        if plan and plan.lower() in PLAN_CREDITS:
            return PLAN_CREDITS[plan.lower()]
        return PLAN_CREDITS[DEFAULT_PLAN]

    @staticmethod
    async def apply_payment_confirmation(
        db: Session,
        user_id: str,
        plan: Optional[str] = None,
        credits: Optional[int] = None,
        customer_ref: Optional[str] = None,
        subscription_ref: Optional[str] = None,
    ) -> dict:
        """Record external refs, then increment by explicit credits or the plan amount"""
        user = await CreditLedger._load_user(db, user_id)
        amount = credits if credits is not None else CreditLedger.credits_for_plan(plan)

        if customer_ref or subscription_ref:
            try:
                if customer_ref:
                    user.external_customer_ref = customer_ref
                if subscription_ref:
                    user.external_subscription_ref = subscription_ref
                await db_commit(db)
            except Exception:
                await db_rollback(db)
                raise

        balance = await CreditLedger.credit(db, user_id, amount)
        return {
            "userId": user_id,
            "added": amount,
            "credits": balance,
            "subscribed": bool(subscription_ref or user.external_subscription_ref),
        }

    @staticmethod
    async def cancel_subscription(db: Session, customer_ref: str) -> bool:
        """Clear the subscription ref for the customer; credits are left alone"""
        stmt = (
            update(User)
            .where(User.external_customer_ref == customer_ref)
            .values(external_subscription_ref=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db_execute(db, stmt)
            await db_commit(db)
        except Exception:
            await db_rollback(db)
            raise

        cleared = result.rowcount > 0
        if cleared:
            logger.info(f"Subscription cleared for customer {customer_ref}")
        else:
            logger.warning(f"Subscription cancel for unknown customer {customer_ref}")
        return cleared


__all__ = ['CreditLedger']
