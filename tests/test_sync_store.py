"""Tests for the context snapshot store."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from tests.utils import Recorder
from widgetbridge import __version__
from widgetbridge.config.schema import ContextDefaultsConfig
from widgetbridge.protocol.messages import ContextSnapshot, DeviceInfo, SafeAreaInsets
from widgetbridge.sync.policy import ScreenWidth, effective_display_mode, is_mobile_width
from widgetbridge.sync.store import SyncStore


@pytest.fixture
def published() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def store(published: list[dict[str, Any]]) -> SyncStore:
    return SyncStore(publisher=published.append, container_max_height=480)


class TestReading:
    def test_defaults(self, store: SyncStore) -> None:
        snapshot = store.snapshot()
        assert snapshot.theme == "dark"
        assert snapshot.display_mode == "inline"
        assert snapshot.max_height is None
        assert snapshot.widget_state is None

    def test_get_accepts_wire_keys(self, store: SyncStore) -> None:
        assert store.get("displayMode") == store.get("display_mode") == "inline"
        assert store.get("userAgent") == DeviceInfo()

    def test_unknown_field(self, store: SyncStore) -> None:
        with pytest.raises(KeyError, match="Unknown context field"):
            store.get("colour")
        with pytest.raises(KeyError, match="Unknown context field"):
            store.subscribe("colour", print)

    def test_init_message_is_full_snapshot(self, store: SyncStore) -> None:
        message = store.init_message()
        assert message["type"] == "init"
        payload = dict(message["payload"])
        del payload["hostInfo"], payload["hostCapabilities"]
        assert payload == store.snapshot().to_wire()

    def test_init_message_describes_host(self, store: SyncStore) -> None:
        payload = store.init_message()["payload"]
        assert payload["hostInfo"] == {"name": "widgetbridge", "version": __version__}
        assert payload["hostCapabilities"]["updateModelContext"] == {"text": {}}
        assert set(payload["hostCapabilities"]) == {
            "openLinks",
            "serverTools",
            "logging",
            "updateModelContext",
            "message",
        }

        payload["hostCapabilities"]["openLinks"]["tampered"] = True
        assert store.init_message()["payload"]["hostCapabilities"]["openLinks"] == {}

    def test_snapshots_are_immutable_values(self, store: SyncStore) -> None:
        before = store.snapshot()
        store.set_theme("light")
        assert before.theme == "dark"
        assert store.snapshot() is not before


class TestUpdates:
    def test_publishes_changed_fields_only(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        assert store.set_theme("light") == {"theme"}
        assert published == [{"type": "update", "payload": {"theme": "light"}}]

    def test_no_op_is_silent(self, store: SyncStore, published: list[dict[str, Any]]) -> None:
        theme = Recorder()
        store.subscribe("theme", theme)
        assert store.set_theme("dark") == frozenset()
        assert published == []
        assert theme.calls == []

    def test_multi_field_update_is_one_message(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        changed = Recorder()
        store.changed.connect(changed)
        assert store.update(theme="light", locale="fr-FR") == {"theme", "locale"}
        assert published == [
            {"type": "update", "payload": {"theme": "light", "locale": "fr-FR"}}
        ]
        assert changed.calls == [frozenset({"theme", "locale"})]

    def test_wire_keys_in_update(self, store: SyncStore, published: list[dict[str, Any]]) -> None:
        store.update(displayMode="fullscreen")
        assert published[-1]["payload"] == {"displayMode": "fullscreen"}

    def test_invalid_value_changes_nothing(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        with pytest.raises(ValidationError):
            store.update(theme="neon", locale="de-DE")
        with pytest.raises(ValueError, match="unknown display mode"):
            store.set_display_mode("maximized")
        assert store.get("locale") == "en-US"
        assert published == []

    def test_rejected_update_keeps_container_height(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        with pytest.raises(ValidationError):
            store.update(max_height=300, theme="purple")
        with pytest.raises(ValueError, match="unknown display mode"):
            store.update(max_height=200, display_mode="maximized")
        assert published == []

        store.set_display_mode("pip")
        assert store.get("max_height") == 480.0

    def test_non_json_widget_state_changes_nothing(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        recorder = Recorder()
        store.subscribe("widget_state", recorder)
        with pytest.raises(ValueError, match="JSON values only"):
            store.set_widget_state({"cb": print})
        assert store.get("widget_state") is None
        assert published == []
        assert recorder.calls == []
        assert store.init_message()["payload"]["widgetState"] is None

    def test_non_json_tool_output_changes_nothing(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        with pytest.raises(ValidationError):
            store.set_tool_output({"items": [print]})
        assert store.get("tool_output") is None
        assert published == []
        assert store.init_message()["payload"]["toolOutput"] is None

    def test_unknown_field_in_update(self, store: SyncStore) -> None:
        with pytest.raises(KeyError):
            store.update(colour="red")

    def test_safe_area_and_device(self, store: SyncStore, published: list[dict[str, Any]]) -> None:
        store.set_safe_area({"top": 24})
        assert store.get("safe_area") == SafeAreaInsets(top=24)
        store.set_device(DeviceInfo(type="mobile", hover=False, touch=True))
        assert published[-1]["payload"] == {
            "userAgent": {
                "device": {"type": "mobile"},
                "capabilities": {"hover": False, "touch": True},
            }
        }

    def test_view(self, store: SyncStore) -> None:
        store.set_view({"mode": "modal", "params": {"id": 3}})
        assert store.get("view").params == {"id": 3}
        store.set_view(None)
        assert store.get("view") is None

    def test_publisher_optional(self) -> None:
        assert SyncStore().set_theme("light") == {"theme"}


class TestSubscriptions:
    def test_notified_once_with_new_value(self, store: SyncStore) -> None:
        theme, locale = Recorder(), Recorder()
        store.subscribe("theme", theme)
        store.subscribe("locale", locale)
        store.update(theme="light", locale="fr-FR")
        assert theme.calls == ["light"]
        assert locale.calls == ["fr-FR"]

    def test_unrelated_fields_not_notified(self, store: SyncStore) -> None:
        theme = Recorder()
        store.subscribe("theme", theme)
        store.set_locale("fr-FR")
        assert theme.calls == []

    def test_unsubscribe(self, store: SyncStore) -> None:
        theme = Recorder()
        subscription = store.subscribe("theme", theme)
        assert store.subscriber_count("theme") == 1
        subscription()
        subscription.unsubscribe()
        assert not subscription.active
        assert store.subscriber_count("theme") == 0
        store.set_theme("light")
        assert theme.calls == []

    def test_update_published_before_notification(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        seen: list[int] = []
        store.subscribe("display_mode", lambda _: seen.append(len(published)))
        store.set_display_mode("fullscreen")
        assert seen == [1]

    def test_failing_subscriber_does_not_block_others(self, store: SyncStore) -> None:
        def broken(_: Any) -> None:
            raise RuntimeError("boom")

        theme = Recorder()
        store.subscribe("theme", broken)
        store.subscribe("theme", theme)
        store.set_theme("light")
        assert theme.calls == ["light"]


class TestLayoutPolicy:
    def test_pip_on_desktop(self, store: SyncStore) -> None:
        store.set_display_mode("pip")
        assert store.get("display_mode") == "pip"
        assert store.get("max_height") == 480

    @pytest.mark.parametrize("width", [ScreenWidth.MOBILE_S, ScreenWidth.MOBILE_L])
    def test_pip_becomes_fullscreen_on_mobile(self, width: ScreenWidth) -> None:
        published: list[dict[str, Any]] = []
        store = SyncStore(publisher=published.append, screen_width=width, container_max_height=480)
        assert store.set_display_mode("pip") == {"display_mode"}
        assert store.get("display_mode") == "fullscreen"
        assert store.get("max_height") is None
        assert published == [{"type": "update", "payload": {"displayMode": "fullscreen"}}]

    def test_narrowing_viewport_leaves_pip(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        store.set_display_mode("pip")
        published.clear()
        assert store.set_screen_width("mobile-s") == {"display_mode", "max_height"}
        assert published == [
            {"type": "update", "payload": {"displayMode": "fullscreen", "maxHeight": None}}
        ]

    def test_screen_width_without_pip(self, store: SyncStore) -> None:
        assert store.set_screen_width(ScreenWidth.TABLET) == frozenset()
        assert store.screen_width is ScreenWidth.TABLET

    def test_max_height_only_visible_in_pip(self, store: SyncStore) -> None:
        assert store.set_max_height(600) == frozenset()
        assert store.get("max_height") is None
        store.set_display_mode("pip")
        assert store.get("max_height") == 600
        assert store.set_max_height(300) == {"max_height"}
        store.set_display_mode("inline")
        assert store.get("max_height") is None

    @pytest.mark.parametrize("height", [0, -10, float("inf"), True])
    def test_invalid_max_height(self, store: SyncStore, height: Any) -> None:
        with pytest.raises(ValueError):
            store.set_max_height(height)

    def test_policy_helpers(self) -> None:
        assert is_mobile_width("mobile-l")
        assert not is_mobile_width(ScreenWidth.TABLET)
        assert effective_display_mode("pip", "tablet") == "pip"
        assert effective_display_mode("inline", "mobile-s") == "inline"
        assert ScreenWidth.MOBILE_S.pixels == 375


class TestToolFields:
    def test_tool_input_clears_partial(self, store: SyncStore) -> None:
        store.set_tool_input_partial({"q": "ca"})
        assert store.set_tool_input({"q": "cats"}) == {"tool_input", "tool_input_partial"}
        assert store.get("tool_input_partial") is None

    def test_tool_output_clears_cancellation(self, store: SyncStore) -> None:
        store.cancel_tool("user aborted")
        assert store.get("tool_cancelled").reason == "user aborted"
        store.set_tool_output({"items": []})
        assert store.get("tool_cancelled") is None
        assert store.get("tool_output") == {"items": []}

    def test_response_metadata(self, store: SyncStore, published: list[dict[str, Any]]) -> None:
        store.set_tool_response_metadata({"requestId": "r1"})
        assert published[-1]["payload"] == {"toolResponseMetadata": {"requestId": "r1"}}


class TestGuestOriginated:
    def test_app_state_retained_without_subscribers(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        """State arriving before anyone subscribes is still there later."""
        assert store.ingest_app_state({"page": 2}) == {"widget_state"}
        assert published == []
        assert store.get("widget_state") == {"page": 2}

        late = Recorder()
        store.subscribe("widget_state", late)
        store.ingest_app_state({"page": 3})
        assert late.calls == [{"page": 3}]

    def test_app_state_must_be_record(self, store: SyncStore) -> None:
        with pytest.raises(ValueError):
            store.ingest_app_state(["not", "a", "record"])

    def test_app_state_must_be_json(self, store: SyncStore) -> None:
        store.ingest_app_state({"page": 1})
        with pytest.raises(ValueError, match="JSON values only"):
            store.ingest_app_state({"page": 2, "onChange": print})
        assert store.get("widget_state") == {"page": 1}

    def test_host_set_widget_state_is_published(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        store.set_widget_state({"page": 1})
        assert published == [{"type": "update", "payload": {"widgetState": {"page": 1}}}]

    def test_ingest_tool_field(self, store: SyncStore, published: list[dict[str, Any]]) -> None:
        assert store.ingest("toolOutput", {"ok": True}) == {"tool_output"}
        assert published == []

    def test_recorded_tool_result_not_echoed(
        self, store: SyncStore, published: list[dict[str, Any]]
    ) -> None:
        outputs = Recorder()
        store.subscribe("tool_output", outputs)
        store.ingest("tool_output", {"structuredContent": {"n": 10}})
        assert outputs.calls == [{"structuredContent": {"n": 10}}]
        assert published == []
        assert store.init_message()["payload"]["toolOutput"] == {"structuredContent": {"n": 10}}

    def test_ingest_rejects_host_fields(self, store: SyncStore) -> None:
        with pytest.raises(KeyError):
            store.ingest("theme", "light")


class TestReadonlyMirror:
    def test_setters_refused(self) -> None:
        mirror = SyncStore(readonly=True)
        with pytest.raises(PermissionError):
            mirror.set_theme("light")
        with pytest.raises(PermissionError):
            mirror.set_screen_width("mobile-s")

    def test_apply_wire(self) -> None:
        mirror = SyncStore(readonly=True)
        theme = Recorder()
        mirror.subscribe("theme", theme)
        changed = mirror.apply_wire(
            {"theme": "light", "maxHeight": 300, "displayMode": "pip", "futureField": 1}
        )
        assert changed == {"theme", "max_height", "display_mode"}
        assert mirror.get("max_height") == 300
        assert theme.calls == ["light"]

    def test_apply_full_snapshot(self) -> None:
        source = ContextSnapshot(theme="light", locale="ja-JP", widget_state={"a": 1})
        mirror = SyncStore(readonly=True)
        mirror.apply_wire(source.to_wire())
        assert mirror.snapshot() == source


class TestFromConfig:
    def test_defaults_section(self) -> None:
        defaults = ContextDefaultsConfig(
            theme="light", locale="de-DE", display_mode="pip", screen_width="mobile-l"
        )
        store = SyncStore.from_config(defaults)
        assert store.get("theme") == "light"
        assert store.get("locale") == "de-DE"
        assert store.get("display_mode") == "fullscreen"

    def test_invalid_display_mode(self) -> None:
        with pytest.raises(ValueError):
            SyncStore.from_config(ContextDefaultsConfig(display_mode="huge"))
