"""Cooperative cancellation for in-flight generations.

Each logical "current operation" slot (one per connected client) owns at most
one live token. Cancelling a slot trips its token and immediately installs a
fresh one, so the next turn is never blocked by an earlier stop request.
"""

from __future__ import annotations

import logging
from itertools import count

logger = logging.getLogger(__name__)

DEFAULT_SLOT = "default"

_token_ids = count(1)


class CancellationToken:
    """Single-use stop signal checked between generation chunks."""

    __slots__ = ("token_id", "slot", "_cancelled")

    def __init__(self, slot: str = DEFAULT_SLOT) -> None:
        self.token_id = next(_token_ids)
        self.slot = slot
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Trip the token. Returns False if it was already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        return True

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<CancellationToken #{self.token_id} slot={self.slot!r} {state}>"


class CancellationHub:
    """Issues and revokes cancellation tokens per slot."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def new_token(self, slot: str = DEFAULT_SLOT) -> CancellationToken:
        """Return a fresh token for ``slot``, superseding any outstanding one."""
        previous = self._tokens.get(slot)
        if previous is not None and previous.cancel():
            logger.debug("Superseded outstanding token %s", previous)
        token = CancellationToken(slot)
        self._tokens[slot] = token
        return token

    def cancel(self, slot: str = DEFAULT_SLOT) -> bool:
        """Cancel the slot's current token and replace it with a fresh one.

        Returns:
            True if a live token was tripped.
        """
        token = self._tokens.get(slot)
        tripped = token.cancel() if token is not None else False
        self._tokens[slot] = CancellationToken(slot)
        if tripped:
            logger.info("Cancelled current operation for slot %s", slot)
        return tripped

    def discard(self, slot: str) -> None:
        """Forget a slot, cancelling whatever it still holds."""
        token = self._tokens.pop(slot, None)
        if token is not None:
            token.cancel()

    def __len__(self) -> int:
        return len(self._tokens)
