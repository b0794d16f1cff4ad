"""Paint fence: wait until the guest has rendered a preceding change.

The host sends ``fence-request{token}``; the guest waits for its next
animation frame and answers ``fence-ack{token}``. Only the newest token is
ever resolved.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from widgetbridge.protocol.messages import FenceRequest, MessageType, envelope

log = logging.getLogger(__name__)


class PaintFence:
    """Token-correlated render barrier for one guest instance.

    Args:
        send: Posts an envelope over the connected channel.
        is_connected: Reports whether the channel is live.
    """

    def __init__(
        self,
        send: Callable[[dict[str, Any]], Any],
        is_connected: Callable[[], bool],
    ) -> None:
        self._send = send
        self._is_connected = is_connected
        self._token = 0
        self._pending: asyncio.Future[None] | None = None
        self._pending_token: int | None = None

    @property
    def token(self) -> int:
        """Most recently minted token (0 before the first fence)."""
        return self._token

    @property
    def pending_token(self) -> int | None:
        return self._pending_token

    def await_paint(self) -> asyncio.Future[None]:
        """Request a fence and return a future for its acknowledgment.

        Resolves immediately when the channel is not connected. A newer call
        supersedes this one: the earlier future is left unresolved. There is
        no timeout; wrap the result in ``asyncio.wait_for`` if you need one.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        if not self._is_connected():
            future.set_result(None)
            return future

        self._token += 1
        if self._pending is not None:
            log.debug("Fence %s superseded by %s", self._pending_token, self._token)
        self._pending = future
        self._pending_token = self._token
        self._send(envelope(MessageType.FENCE_REQUEST, FenceRequest(token=self._token)))
        return future

    def acknowledge(self, token: int) -> bool:
        """Resolve the pending fence if ``token`` is current.

        Returns:
            True if a fence was resolved, False for stale or unknown tokens.
        """
        if self._pending is None or token != self._pending_token:
            log.debug("Ignoring stale fence ack %s (pending %s)", token, self._pending_token)
            return False
        future = self._pending
        self._pending = None
        self._pending_token = None
        if not future.done():
            future.set_result(None)
        return True

    def abandon(self) -> None:
        """Forget the pending fence without resolving it."""
        self._pending = None
        self._pending_token = None
