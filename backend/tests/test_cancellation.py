"""Tests for the cancellation hub."""

from app.chat.cancellation import CancellationHub, CancellationToken


def test_token_cancels_exactly_once() -> None:
    token = CancellationToken("a")
    assert not token.cancelled
    assert token.cancel() is True
    assert token.cancelled
    assert token.cancel() is False


def test_new_token_supersedes_outstanding_one(hub: CancellationHub) -> None:
    first = hub.new_token("a")
    second = hub.new_token("a")

    assert first.cancelled
    assert not second.cancelled


def test_cancel_replaces_token_with_a_fresh_one(hub: CancellationHub) -> None:
    token = hub.new_token("a")

    assert hub.cancel("a") is True
    assert token.cancelled

    fresh = hub.new_token("a")
    assert fresh is not token
    assert not fresh.cancelled


def test_cancel_without_live_token(hub: CancellationHub) -> None:
    assert hub.cancel("nobody") is False
    assert len(hub) == 1


def test_slots_are_independent(hub: CancellationHub) -> None:
    a = hub.new_token("a")
    b = hub.new_token("b")

    hub.cancel("a")

    assert a.cancelled
    assert not b.cancelled


def test_discard_cancels_and_forgets(hub: CancellationHub) -> None:
    token = hub.new_token("a")
    hub.discard("a")

    assert token.cancelled
    assert len(hub) == 0

