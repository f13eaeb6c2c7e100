import logging

from core.side_effects import best_effort


def test_returns_result():
    assert best_effort("adding", lambda a, b: a + b, 2, 3) == 5


def test_swallows_and_logs_failures(caplog):
    def boom():
        raise RuntimeError("down")

    with caplog.at_level(logging.WARNING, logger="core.side_effects"):
        assert best_effort("notifications: queue", boom, booking_id=42) is None

    record = caplog.records[-1]
    assert record.booking_id == 42
    assert "notifications: queue failed" in record.getMessage()


def test_booking_id_is_not_forwarded():
    seen = {}

    def capture(**kwargs):
        seen.update(kwargs)

    best_effort("capture", capture, booking_id=7, flag=True)

    assert seen == {"flag": True}
