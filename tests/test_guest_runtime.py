"""Tests for the guest runtime talking to a real host session."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from tests.utils import HOST_ORIGIN, SANDBOX_ORIGIN, Recorder, connect_pair, settle
from widgetbridge import __version__
from widgetbridge.channel.manager import GuestState
from widgetbridge.channel.ports import Window
from widgetbridge.errors import HostUnavailableError
from widgetbridge.guest import GuestRuntime
from widgetbridge.host import HostSession


class TestWithoutHost:
    """A guest loaded outside any frame."""

    @pytest.fixture
    def orphan(self) -> GuestRuntime:
        return GuestRuntime(Window(SANDBOX_ORIGIN))

    def test_host_unavailable(self, orphan: GuestRuntime) -> None:
        orphan.start()
        assert not orphan.host_available
        assert not orphan.is_connected

    async def test_calls_raise(self, orphan: GuestRuntime) -> None:
        with pytest.raises(HostUnavailableError, match="call_tool"):
            await orphan.call_tool("search")
        with pytest.raises(HostUnavailableError):
            orphan.notify_height(100)
        with pytest.raises(HostUnavailableError):
            orphan.set_state({"a": 1})
        with pytest.raises(HostUnavailableError):
            orphan.request_display_mode("fullscreen")

    def test_context_defaults_readable(self, orphan: GuestRuntime) -> None:
        assert orphan.context.get("theme") == "dark"


class TestConnection:
    async def test_init_mirrors_host_context(self, session: HostSession) -> None:
        host, guest = await connect_pair(session, start=False)
        received = Recorder()
        guest.context_received.connect(received)
        host.store.set_theme("light")
        guest.start()
        await settle()

        assert guest.is_connected
        assert host.state is GuestState.CONNECTED
        assert [call[0] for call in received.calls] == ["update", "init"]
        assert guest.context.snapshot() == host.store.snapshot()

    async def test_init_describes_host(self, session: HostSession) -> None:
        host, guest = await connect_pair(session)
        assert guest.host_info == {"name": "widgetbridge", "version": __version__}
        assert guest.host_capabilities is not None
        assert guest.host_capabilities["message"] == {"text": {}}
        assert guest.context.snapshot() == host.store.snapshot()

    async def test_updates_follow(self, session: HostSession) -> None:
        host, guest = await connect_pair(session)
        theme = Recorder()
        guest.context.subscribe("theme", theme)
        host.store.set_theme("light")
        await settle()
        assert theme.calls == ["light"]

    async def test_untrusted_parent_rejected(
        self, session: HostSession, caplog: pytest.LogCaptureFixture
    ) -> None:
        host = session.open_widget(origin=SANDBOX_ORIGIN)
        guest = GuestRuntime(host.frame_window, allowed_parent_origins=["https://other.example.com"])
        with caplog.at_level(logging.WARNING, logger="widgetbridge.guest"):
            guest.start()
            await settle()
        assert not guest.is_connected
        assert host.state is GuestState.HANDSHAKING
        assert "untrusted parent origin" in caplog.text

    async def test_loopback_parent_always_allowed(self) -> None:
        async with HostSession() as local:
            host = local.open_widget()
            guest = GuestRuntime(host.frame_window)
            guest.start()
            await settle()
            assert guest.is_connected

    async def test_calls_before_handshake_are_queued(self, session: HostSession) -> None:
        host, guest = await connect_pair(session, start=False)
        guest.request_display_mode("fullscreen")
        guest.set_state({"draft": "hello"})
        assert host.store.get("display_mode") == "inline"

        guest.start()
        await settle()
        assert host.store.get("display_mode") == "fullscreen"
        assert host.store.get("widget_state") == {"draft": "hello"}


class TestGuestApi:
    async def test_set_state_updates_mirror_immediately(self, session: HostSession) -> None:
        host, guest = await connect_pair(session)
        guest.set_state({"page": 2})
        assert guest.context.get("widget_state") == {"page": 2}
        await settle()
        assert host.store.get("widget_state") == {"page": 2}

    async def test_notify_height(self, session: HostSession) -> None:
        host, guest = await connect_pair(session)
        heights = Recorder()
        host.height_changed.connect(heights)
        guest.notify_height(250)
        guest.notify_height(250)
        await settle()
        assert host.height == 250
        assert heights.calls == [250]

    async def test_call_tool_round_trip(self, session: HostSession) -> None:
        async def handler(name: str, args: dict[str, Any]) -> Any:
            return {"structuredContent": {"tool": name, "n": args["n"] * 2}}

        host = session.open_widget(origin=SANDBOX_ORIGIN, tool_handler=handler)
        guest = GuestRuntime(host.frame_window, allowed_parent_origins=[HOST_ORIGIN])
        guest.start()
        await settle()

        first, second = await asyncio.gather(
            guest.call_tool("double", {"n": 2}), guest.call_tool("double", {"n": 5})
        )
        assert first == {"structuredContent": {"tool": "double", "n": 4}}
        assert second == {"structuredContent": {"tool": "double", "n": 10}}

    async def test_close_fails_pending_calls(self, session: HostSession) -> None:
        never = asyncio.Event()

        async def handler(name: str, args: dict[str, Any]) -> Any:
            await never.wait()

        host = session.open_widget(origin=SANDBOX_ORIGIN, tool_handler=handler)
        guest = GuestRuntime(host.frame_window, allowed_parent_origins=[HOST_ORIGIN])
        guest.start()
        await settle()

        call = asyncio.ensure_future(guest.call_tool("slow"))
        await settle()
        guest.close()
        with pytest.raises(HostUnavailableError):
            await call
        never.set()
        await settle()

    async def test_teardown_on_host_close(self, session: HostSession) -> None:
        host, guest = await connect_pair(session)
        teardown = Recorder()
        guest.teardown.connect(teardown)
        host.close()
        await settle()
        assert teardown.calls == [guest]
        assert not guest.is_connected

    async def test_host_notifications(self, session: HostSession) -> None:
        host, guest = await connect_pair(session)
        links, messages, modals, contexts, logs = (Recorder() for _ in range(5))
        host.instance.link_opened.connect(links)
        host.instance.message_sent.connect(messages)
        host.instance.modal_requested.connect(modals)
        host.instance.model_context_updated.connect(contexts)
        host.instance.log_received.connect(logs)

        guest.open_link("https://example.com/docs")
        guest.send_message("Show me more")
        guest.request_modal("details", {"id": 7})
        guest.update_model_context(content="user picked item 7")
        guest.log("info", {"event": "click"}, logger="list")
        await settle()

        assert links.calls == ["https://example.com/docs"]
        assert messages.calls == ["Show me more"]
        assert modals.last.params == {"id": 7}
        assert contexts.last.content == "user picked item 7"
        assert logs.last.logger == "list"

    async def test_inject_state(self, session: HostSession) -> None:
        host, guest = await connect_pair(session)
        host.inject_state({"debug": True})
        assert host.store.get("widget_state") == {"debug": True}
        await settle()
        assert guest.context.get("widget_state") == {"debug": True}


class TestPaintFence:
    async def test_fence_answered_after_frame(self, session: HostSession) -> None:
        frames: list[int] = []

        async def frame() -> None:
            frames.append(len(frames))
            await asyncio.sleep(0)

        host, guest = await connect_pair(session, frame_scheduler=frame)
        await asyncio.wait_for(host.await_paint(), timeout=1)
        assert frames == [0]

    async def test_malformed_host_message_dropped(
        self, session: HostSession, caplog: pytest.LogCaptureFixture
    ) -> None:
        host, guest = await connect_pair(session)
        with caplog.at_level(logging.WARNING, logger="widgetbridge.guest"):
            host.instance.send({"type": "fence-request", "payload": {"token": "one"}})
            await settle()
        assert "Dropped host message" in caplog.text
        assert guest.is_connected
