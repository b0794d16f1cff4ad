"""Tests for bootstrap document rendering and the bridge script."""

from __future__ import annotations

import json
import logging
import re

import pytest

from tests.utils import HOST_ORIGIN, SANDBOX_ORIGIN
from widgetbridge.config.schema import Config
from widgetbridge.document import (
    ERROR_DOCUMENT,
    DocumentBuilder,
    build_bootstrap_document,
    escape_html,
    inject_bridge_script,
    render_bridge_script,
    script_safe_json,
    unescape_html,
)
from widgetbridge.security.csp import ResourceCSP
from widgetbridge.security.origins import OriginPolicy


class TestEscaping:
    def test_escapes_all_five(self) -> None:
        assert escape_html("&<>\"'") == "&amp;&lt;&gt;&quot;&#39;"

    def test_unescape_reverses(self) -> None:
        assert unescape_html("&amp;&lt;&gt;&quot;&#39;") == "&<>\"'"

    @pytest.mark.parametrize(
        "value",
        ["plain", "a & b", "<script>", "\"x\" 'y'", "&amp;already", "", "&lt;&amp;"],
    )
    def test_idempotent_through_unescape(self, value: str) -> None:
        escaped = escape_html(value)
        assert escape_html(unescape_html(escaped)) == escaped


class TestBootstrapDocument:
    def test_structure(self) -> None:
        html = build_bootstrap_document("https://cdn.example.com/w.js", "light", "default-src 'self'")
        assert html.startswith("<!DOCTYPE html>")
        assert 'data-theme="light"' in html
        assert '<meta http-equiv="Content-Security-Policy" content="default-src &#39;self&#39;" />' in html
        assert '<div id="root"></div>' in html
        assert '<script src="https://cdn.example.com/w.js"></script>' in html
        assert "background: transparent" in html

    def test_inputs_are_escaped(self) -> None:
        html = build_bootstrap_document(
            'https://cdn.example.com/w.js"><script>alert(1)</script>',
            'dark" onload="alert(1)',
            "default-src 'self'\"><script>",
        )
        assert "<script>alert(1)</script>" not in html
        assert 'onload="alert(1)"' not in html
        assert html.count("<script") == 1

    def test_bridge_script_included(self) -> None:
        html = build_bootstrap_document("/w.js", "dark", "", bridge_script="<script>bridge()</script>")
        assert html.index("bridge()") < html.index('<script src="/w.js">')


class TestInjectBridgeScript:
    def test_after_head(self) -> None:
        result = inject_bridge_script("<html><head lang='en'><title>x</title></head></html>", "<S/>")
        assert result == "<html><head lang='en'><S/><title>x</title></head></html>"

    def test_after_doctype(self) -> None:
        assert inject_bridge_script("<!doctype html><p>x</p>", "<S/>") == "<!doctype html><S/><p>x</p>"

    def test_prepend(self) -> None:
        assert inject_bridge_script("<p>x</p>", "<S/>") == "<S/><p>x</p>"


class TestBridgeScript:
    def test_origins_serialized(self) -> None:
        script = render_bridge_script([HOST_ORIGIN, 5])
        match = re.search(r"var allowedOrigins = (\[.*?\]);", script)
        assert match is not None
        assert json.loads(match.group(1)) == [HOST_ORIGIN]

    def test_origins_normalized_like_event_origin(self) -> None:
        script = render_bridge_script(
            [
                "https://chat.example.com/",
                "https://app.example.com:443",
                "HTTP://Local.Example.com:8080/path",
                "https://chat.example.com",
                "not an origin",
            ]
        )
        match = re.search(r"var allowedOrigins = (\[.*?\]);", script)
        assert match is not None
        assert json.loads(match.group(1)) == [
            "https://chat.example.com",
            "https://app.example.com",
            "http://local.example.com:8080",
        ]

    def test_origins_cannot_close_script_tag(self) -> None:
        script = render_bridge_script(["https://x.com</script><script>alert(1)//"])
        assert script.count("</script>") == 1

    def test_script_safe_json(self) -> None:
        encoded = script_safe_json(["<&> "])
        assert "<" not in encoded and ">" not in encoded and "&" not in encoded
        assert json.loads(encoded) == ["<&> "]

    def test_protocol_messages_present(self) -> None:
        script = render_bridge_script([])
        for message_type in ("ready", "handshake", "handshake-complete", "fence-ack", "notify-height"):
            assert f'"{message_type}"' in script

    def test_teardown_handled(self) -> None:
        script = render_bridge_script([])
        assert 'data.type === "teardown"' in script
        assert "widgetbridge:teardown" in script
        assert "runtime.hostCapabilities" in script


class TestDocumentBuilder:
    @pytest.fixture
    def builder(self) -> DocumentBuilder:
        return DocumentBuilder(
            OriginPolicy([SANDBOX_ORIGIN], host_origin=HOST_ORIGIN),
            base_csp=ResourceCSP(connect_domains=["https://api.example.com"]),
            allowed_parent_origins=[HOST_ORIGIN],
        )

    def test_rejected_source_renders_error_document(
        self, builder: DocumentBuilder, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR, logger="widgetbridge.document"):
            html = builder.build("https://evil.com/x.js?<b>marker</b>")
        assert html == ERROR_DOCUMENT
        assert "marker" not in html
        assert "not allowed" in caplog.text

    def test_root_relative_absolutized(self, builder: DocumentBuilder) -> None:
        html = builder.build("/dist/widget.js")
        assert f'<script src="{HOST_ORIGIN}/dist/widget.js"></script>' in html
        assert f"script-src &#39;self&#39; &#39;unsafe-inline&#39; blob: {HOST_ORIGIN}" in html

    def test_widget_csp_merged_with_config(self, builder: DocumentBuilder) -> None:
        policy = builder.csp_for(
            f"{SANDBOX_ORIGIN}/w.js", ResourceCSP(connect_domains=["https://extra.example.com"])
        )
        assert f"connect-src 'self' {SANDBOX_ORIGIN} https://api.example.com https://extra.example.com" in policy

    def test_bridge_script_embedded(self, builder: DocumentBuilder) -> None:
        html = builder.build(f"{SANDBOX_ORIGIN}/w.js", theme="light")
        assert "allowedOrigins" in html
        assert 'data-theme="light"' in html

    def test_without_bridge(self) -> None:
        builder = DocumentBuilder(OriginPolicy(), include_bridge=False)
        assert "allowedOrigins" not in builder.build("http://localhost:5173/w.js")

    def test_from_config(self) -> None:
        config = Config()
        config.security.allowed_origins = [SANDBOX_ORIGIN]
        config.csp.base_resource_domains = ["https://fonts.example.com"]
        builder = DocumentBuilder.from_config(config)
        assert "https://fonts.example.com" in builder.csp_for(f"{SANDBOX_ORIGIN}/w.js")
