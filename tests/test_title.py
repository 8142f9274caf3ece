from title import make_title_from_prompt, resolve_track_title, sanitize_track_title, truncate


def test_title_is_first_line_with_collapsed_whitespace():
    assert make_title_from_prompt("  Rainy   night\tin a cabin \nsecond line") == "Rainy night in a cabin"


def test_long_title_is_cut_with_ellipsis():
    title = make_title_from_prompt("a" * 100)
    assert title == "a" * 77 + "…"
    assert len(title) == 78


def test_title_at_limit_is_untouched():
    assert make_title_from_prompt("b" * 80) == "b" * 80


def test_empty_prompt_uses_fallback():
    assert make_title_from_prompt("") == "SoftVibe Track"
    assert make_title_from_prompt("   \n  ") == "SoftVibe Track"
    assert make_title_from_prompt(None) == "SoftVibe Track"


def test_sanitize_strips_control_characters_and_caps_length():
    assert sanitize_track_title("  Night\x00 rain\x07  ") == "Night rain"
    assert len(sanitize_track_title("x" * 300)) == 140
    assert sanitize_track_title("\x01\x02") == ""
    assert sanitize_track_title(None) == ""


def test_resolve_track_title_priority():
    assert resolve_track_title("Mine", "Job title", "prompt text") == "Mine"
    assert resolve_track_title("  ", "Job title", "prompt text") == "Job title"
    assert resolve_track_title(None, None, "Soft waves\nmore") == "Soft waves"
    assert resolve_track_title(None, None, None) == "SoftVibe Track"


def test_resolve_track_title_caps_at_eighty():
    assert len(resolve_track_title("z" * 120)) == 80


def test_truncate():
    assert truncate("abcdef", 3) == "abc"
    assert truncate("ab", 3) == "ab"
