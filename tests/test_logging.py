import asyncio
import logging

import pytest

from app.core.logging import ContextFilter, LogContext, get_logger, redact


class Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.addFilter(ContextFilter())
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    handler = Capture()
    logger = get_logger("tests")
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    yield logger, handler.records
    logger.removeHandler(handler)


def test_redact_masks_keys_and_account_numbers():
    assert redact("key sk_live_abc123XYZ used") == "key sk_live_**** used"
    assert redact("paying 0123456789 now") == "paying ******6789 now"
    assert redact("TRK-1234567890") == "TRK-1234567890"
    assert redact("payout_65f0_1715000000000") == "payout_65f0_1715000000000"


def test_context_nests_and_resets(captured):
    logger, records = captured

    with LogContext(user_id="u1"):
        with LogContext(payout_id="p1", reference=None):
            logger.info("inner")
        logger.info("outer")
    logger.info("after")

    inner, outer, after = records
    assert (inner.user_id, inner.payout_id) == ("u1", "p1")
    assert not hasattr(inner, "reference")
    assert outer.user_id == "u1" and not hasattr(outer, "payout_id")
    assert not hasattr(after, "user_id")


@pytest.mark.anyio
async def test_context_is_isolated_between_tasks(captured):
    logger, records = captured

    async def work(user_id):
        with LogContext(user_id=user_id):
            await asyncio.sleep(0)
            logger.info("step")

    await asyncio.gather(work("a"), work("b"))

    assert sorted(r.user_id for r in records) == ["a", "b"]
