from app.services.sales_order_notes import (
    CANCEL_REASON_PREFIX,
    ELLIPSIS,
    NOTES_SEPARATOR,
    format_cancellation_notes,
)


def test_notes_append_reason_after_blank_line():
    out = format_cancellation_notes("deliver after 6pm", "customer changed mind")
    assert out == "deliver after 6pm\n\nCancellation reason: customer changed mind"


def test_notes_empty_existing_gives_reason_only():
    assert format_cancellation_notes(None, "dup") == CANCEL_REASON_PREFIX + "dup"
    assert format_cancellation_notes("   ", " dup ") == CANCEL_REASON_PREFIX + "dup"


def test_notes_truncates_old_notes_from_head():
    old = "a" * 100 + "TAIL"
    out = format_cancellation_notes(old, "r", max_len=60)
    assert len(out) == 60
    assert out.endswith(NOTES_SEPARATOR + CANCEL_REASON_PREFIX + "r")
    assert out.startswith(ELLIPSIS)
    assert "TAIL" in out


def test_notes_reason_wins_when_no_room():
    out = format_cancellation_notes("old notes", "x" * 40, max_len=len(CANCEL_REASON_PREFIX) + 40)
    assert out == CANCEL_REASON_PREFIX + "x" * 40


def test_notes_overlong_reason_cut_at_tail():
    out = format_cancellation_notes("old", "y" * 600, max_len=500)
    assert len(out) == 500
    assert out.startswith(CANCEL_REASON_PREFIX)


def test_notes_deterministic():
    a = format_cancellation_notes("n" * 480, "because", max_len=500)
    b = format_cancellation_notes("n" * 480, "because", max_len=500)
    assert a == b
    assert len(a) <= 500
