"""
Tests for the per-request generation context.
"""

from harmony_ai.context import GenerationContext


def test_attempt_follows_parent_cancel():
    ctx = GenerationContext(user_id="user-1", tier="pro")
    attempt = ctx.attempt()

    assert attempt.user_id == "user-1"
    assert attempt.tier == "pro"
    assert attempt.cancelled is False

    ctx.cancel()

    assert attempt.cancelled is True


def test_cancelling_attempt_leaves_parent_running():
    ctx = GenerationContext(user_id="user-1")
    first = ctx.attempt()
    second = ctx.attempt()

    first.cancel()

    assert first.cancelled is True
    assert second.cancelled is False
    assert ctx.cancelled is False
