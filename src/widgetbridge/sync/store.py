"""Host-owned context snapshot with field subscriptions.

The store is the only writer of the snapshot. Every setter validates its
input, skips no-op changes, notifies each affected field's subscribers once,
and publishes one ``update`` message carrying just the changed fields.
Guest-originated values go through ``ingest*`` and are not echoed back.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from widgetbridge.events import Signal
from widgetbridge.protocol.messages import (
    HOST_CAPABILITIES,
    HOST_INFO,
    SNAPSHOT_FIELDS,
    ContextSnapshot,
    DeviceInfo,
    MessageType,
    SafeAreaInsets,
    ToolCancellation,
    View,
    envelope,
    field_name,
    validate_display_mode,
    validate_height,
    validate_state,
)
from widgetbridge.sync.policy import ScreenWidth, effective_display_mode

if TYPE_CHECKING:
    from widgetbridge.config.schema import ContextDefaultsConfig

log = logging.getLogger(__name__)

Publisher = Callable[[dict[str, Any]], Any]

TOOL_FIELDS = frozenset(
    {
        "tool_input",
        "tool_input_partial",
        "tool_output",
        "tool_response_metadata",
        "tool_cancelled",
    }
)


class Subscription:
    """Handle returned by SyncStore.subscribe. Call it to unsubscribe."""

    def __init__(self, field: str, unsubscribe: Callable[[], None]) -> None:
        self.field = field
        self._unsubscribe: Callable[[], None] | None = unsubscribe

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def unsubscribe(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __call__(self) -> None:
        self.unsubscribe()


class SyncStore:
    """Context snapshot plus the subscription API.

    Args:
        initial: Starting snapshot (model or wire/field mapping).
        publisher: Receives outbound envelopes, normally ``GuestInstance.send``.
        screen_width: Simulated viewport; mobile widths turn pip into
            fullscreen.
        container_max_height: Height limit reported while in pip.
        readonly: Reject host setters (the guest's local mirror).
    """

    def __init__(
        self,
        initial: ContextSnapshot | Mapping[str, Any] | None = None,
        *,
        publisher: Publisher | None = None,
        screen_width: ScreenWidth | str = ScreenWidth.FULL,
        container_max_height: float | None = None,
        readonly: bool = False,
    ) -> None:
        if initial is None:
            snapshot = ContextSnapshot()
        elif isinstance(initial, ContextSnapshot):
            snapshot = initial
        else:
            snapshot = ContextSnapshot.model_validate(dict(initial))

        self.publisher = publisher
        self.readonly = readonly
        self.screen_width = ScreenWidth(screen_width)
        self._container_max_height = (
            validate_height(container_max_height) if container_max_height is not None else None
        )
        self._signals: dict[str, Signal[[Any]]] = {}
        self.changed: Signal[[frozenset[str]]] = Signal("context_changed")
        self._snapshot = snapshot if readonly else self._apply_policy(
            snapshot, self._container_max_height
        )

    @classmethod
    def from_config(
        cls, defaults: ContextDefaultsConfig, *, publisher: Publisher | None = None
    ) -> SyncStore:
        """Initial snapshot from the ``context`` config section."""
        return cls(
            {
                "theme": defaults.theme,
                "locale": defaults.locale,
                "display_mode": validate_display_mode(defaults.display_mode),
            },
            publisher=publisher,
            screen_width=defaults.screen_width,
            container_max_height=defaults.max_height,
        )

    # --- Reading -------------------------------------------------------------

    def snapshot(self) -> ContextSnapshot:
        """Current snapshot. Frozen, so it is safe to hand out."""
        return self._snapshot

    def get(self, field: str) -> Any:
        return getattr(self._snapshot, self._field(field))

    def subscribe(self, field: str, callback: Callable[[Any], Any]) -> Subscription:
        """Call ``callback(value)`` after each change of ``field``.

        Raises:
            KeyError: unknown field name.
        """
        name = self._field(field)
        signal = self._signals.get(name)
        if signal is None:
            signal = self._signals[name] = Signal(f"context.{name}")
        return Subscription(name, signal.connect(callback))

    def subscriber_count(self, field: str) -> int:
        signal = self._signals.get(self._field(field))
        return signal.handler_count if signal else 0

    @staticmethod
    def _field(key: str) -> str:
        try:
            return field_name(key)
        except KeyError:
            raise KeyError(f"Unknown context field: {key!r}") from None

    # --- Host setters --------------------------------------------------------

    def update(self, **fields: Any) -> frozenset[str]:
        """Apply several fields as one logical change.

        Keys may be field names or wire keys. ``max_height`` configures the
        pip container height rather than the snapshot directly.

        Returns:
            The fields that actually changed.

        Raises:
            KeyError: unknown field.
            pydantic.ValidationError: invalid value.
        """
        self._check_writable()
        changes = {self._field(k): v for k, v in fields.items()}
        container = self._container_max_height
        if "max_height" in changes:
            value = changes.pop("max_height")
            container = validate_height(value) if value is not None else None
        if "display_mode" in changes:
            validate_display_mode(changes["display_mode"])
        candidate = self._apply_policy(self._build(changes), container)
        changed, wire = self._diff(candidate)
        self._container_max_height = container
        return self._swap(candidate, changed, wire, push=True)

    def set_theme(self, theme: str) -> frozenset[str]:
        return self.update(theme=theme)

    def set_locale(self, locale: str) -> frozenset[str]:
        return self.update(locale=locale)

    def set_display_mode(self, mode: str) -> frozenset[str]:
        """Request a display mode; pip becomes fullscreen on mobile widths."""
        return self.update(display_mode=mode)

    def set_max_height(self, height: float | None) -> frozenset[str]:
        """Configure the pip container height. Only visible while in pip."""
        return self.update(max_height=height)

    def set_safe_area(self, insets: SafeAreaInsets | Mapping[str, float]) -> frozenset[str]:
        return self.update(safe_area=insets)

    def set_device(self, device: DeviceInfo | Mapping[str, Any]) -> frozenset[str]:
        return self.update(device=device)

    def set_view(self, view: View | Mapping[str, Any] | None) -> frozenset[str]:
        return self.update(view=view)

    def set_tool_input(self, tool_input: Mapping[str, Any]) -> frozenset[str]:
        """Final tool arguments. Clears any partial input."""
        return self.update(tool_input=dict(tool_input), tool_input_partial=None)

    def set_tool_input_partial(self, partial: Mapping[str, Any] | None) -> frozenset[str]:
        return self.update(tool_input_partial=dict(partial) if partial is not None else None)

    def set_tool_output(self, output: Mapping[str, Any] | None) -> frozenset[str]:
        """Tool result. Clears a previous cancellation."""
        return self.update(
            tool_output=dict(output) if output is not None else None, tool_cancelled=None
        )

    def set_tool_response_metadata(self, metadata: Mapping[str, Any] | None) -> frozenset[str]:
        return self.update(tool_response_metadata=metadata)

    def cancel_tool(self, reason: str | None = None) -> frozenset[str]:
        return self.update(tool_cancelled=ToolCancellation(reason=reason))

    def set_widget_state(self, state: Mapping[str, Any] | None) -> frozenset[str]:
        return self.update(widget_state=validate_state(dict(state) if state is not None else None))

    def set_screen_width(self, width: ScreenWidth | str) -> frozenset[str]:
        """Change the simulated viewport. Leaving pip may be forced."""
        self._check_writable()
        self.screen_width = ScreenWidth(width)
        return self._commit(
            self._apply_policy(self._snapshot, self._container_max_height), push=True
        )

    def init_message(self) -> dict[str, Any]:
        """Full-snapshot ``init`` envelope for a newly connected guest.

        Besides the snapshot it carries ``hostInfo`` and ``hostCapabilities``.
        """
        payload = self._snapshot.to_wire()
        payload["hostInfo"] = dict(HOST_INFO)
        payload["hostCapabilities"] = copy.deepcopy(HOST_CAPABILITIES)
        return envelope(MessageType.INIT, payload)

    # --- Guest-originated ----------------------------------------------------

    def ingest_app_state(self, value: Any) -> frozenset[str]:
        """Store widget state proposed by the guest.

        Retained even when nobody is subscribed yet. Not pushed back.
        """
        state = validate_state(value)
        return self._commit(self._build({"widget_state": state}), push=False)

    def ingest(self, field: str, value: Any) -> frozenset[str]:
        """Store a tool field the guest already holds, without echoing it.

        No guest message is routed here. It is for host integrations that run
        a tool on the guest's behalf (a chat shell answering the widget's own
        ``call-tool`` and then recording the result as ``toolOutput``) where
        pushing the value back would make the guest render it twice.
        """
        name = self._field(field)
        if name not in TOOL_FIELDS:
            raise KeyError(f"{name!r} cannot be ingested from a guest")
        return self._commit(self._build({name: value}), push=False)

    def apply_wire(self, payload: Mapping[str, Any]) -> frozenset[str]:
        """Mirror an ``init``/``update`` payload as received (guest side).

        Unknown keys are ignored. Nothing is published.
        """
        changes: dict[str, Any] = {}
        for key, value in payload.items():
            try:
                changes[field_name(key)] = value
            except KeyError:
                log.debug("Ignoring unknown context key %r", key)
        return self._commit(self._build(changes), push=False)

    # --- Internals -----------------------------------------------------------

    def _check_writable(self) -> None:
        if self.readonly:
            raise PermissionError("This context snapshot is read-only")

    def _build(self, changes: Mapping[str, Any]) -> ContextSnapshot:
        if not changes:
            return self._snapshot
        data = self._snapshot.model_dump()
        data.update(changes)
        return ContextSnapshot.model_validate(data)

    def _apply_policy(
        self, snapshot: ContextSnapshot, container_max_height: float | None
    ) -> ContextSnapshot:
        mode = effective_display_mode(snapshot.display_mode, self.screen_width)
        max_height = container_max_height if mode == "pip" else None
        if mode == snapshot.display_mode and max_height == snapshot.max_height:
            return snapshot
        if mode != snapshot.display_mode:
            log.debug(
                "Display mode %s unavailable at %s; using %s",
                snapshot.display_mode,
                self.screen_width.value,
                mode,
            )
        return snapshot.model_copy(update={"display_mode": mode, "max_height": max_height})

    def _commit(self, candidate: ContextSnapshot, *, push: bool) -> frozenset[str]:
        changed, wire = self._diff(candidate)
        return self._swap(candidate, changed, wire, push=push)

    def _diff(self, candidate: ContextSnapshot) -> tuple[frozenset[str], dict[str, Any]]:
        """Changed fields and their wire form.

        A value that cannot go on the wire raises here, before the snapshot
        is replaced.
        """
        previous = self._snapshot
        changed = frozenset(
            name for name in SNAPSHOT_FIELDS if getattr(candidate, name) != getattr(previous, name)
        )
        return changed, candidate.to_wire(set(changed)) if changed else {}

    def _swap(
        self,
        candidate: ContextSnapshot,
        changed: frozenset[str],
        wire: dict[str, Any],
        *,
        push: bool,
    ) -> frozenset[str]:
        if not changed:
            return changed

        self._snapshot = candidate
        # Publish first: a subscriber may follow up with a paint fence, which
        # must reach the guest after the update it is fencing.
        if push:
            self._publish(envelope(MessageType.UPDATE, wire))

        for name in _ordered(changed):
            signal = self._signals.get(name)
            if signal is not None:
                signal.emit(getattr(candidate, name))
        self.changed.emit(changed)
        return changed

    def _publish(self, message: dict[str, Any]) -> None:
        if self.publisher is None:
            return
        self.publisher(message)


def _ordered(fields: Iterable[str]) -> list[str]:
    order = list(ContextSnapshot.model_fields)
    return sorted(fields, key=order.index)
