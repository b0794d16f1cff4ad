"""Error taxonomy for the host/guest bridge.

None of these are fatal to the host. The channel manager catches
RejectedOriginError and MalformedMessageError at its dispatch boundary and
drops the offending message; NotConnectedError is only raised where a caller
explicitly asks for it; HostUnavailableError is how the guest runtime rejects
calls made without a parent frame.
"""

from __future__ import annotations

from dataclasses import dataclass


class BridgeError(Exception):
    """Base class for widgetbridge errors."""


@dataclass
class RejectedOriginError(BridgeError):
    """A message sender or resource URL failed the origin allow-list.

    Never reported back to the guest.
    """

    origin: str
    reason: str = "origin not allowed"

    def __str__(self) -> str:
        return f"Rejected origin {self.origin!r}: {self.reason}"


@dataclass
class MalformedMessageError(BridgeError):
    """An inbound message had the wrong shape, field types or value range."""

    message_type: str | None
    detail: str

    def __str__(self) -> str:
        kind = self.message_type or "<untyped>"
        return f"Malformed {kind} message: {self.detail}"


@dataclass
class NotConnectedError(BridgeError):
    """An operation needing a live channel ran before handshake or after teardown."""

    operation: str
    state: str

    def __str__(self) -> str:
        return f"Cannot {self.operation}: channel is {self.state}"


class HostUnavailableError(BridgeError):
    """A guest-side call was made with no parent host present."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"No host available for {operation}")
        self.operation = operation
