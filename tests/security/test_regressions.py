"""Regression anchors for the rate limit core."""

from pathlib import Path


def test_evaluator_does_no_io() -> None:
    text = Path("src/security/rate_limit.py").read_text(encoding="utf-8")
    assert "sqlite3" not in text
    assert "yaml" not in text
    assert "open(" not in text


def test_read_then_act_window_is_documented() -> None:
    text = Path("src/security/rate_limit.py").read_text(encoding="utf-8")
    assert "read-then-act" in text


def test_rate_check_runs_before_insert() -> None:
    text = Path("src/core/runtime.py").read_text(encoding="utf-8")
    assert text.index("validate_submission(") < text.index("insert_message(")
