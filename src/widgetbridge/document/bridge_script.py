"""In-frame bridge script injected into synthesized guest documents.

The script is the browser-side counterpart of ``widgetbridge.guest``: it
announces readiness, accepts the port handshake only from the parent window
on an allowed origin, queues outbound calls until the port exists, reports
intrinsic height on the urgent window path, and answers paint fences after
the next animation frame.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

from widgetbridge.security.origins import normalize_origin

# The template uses {var} for Python format() substitution and
# {{ / }} for literal braces in the JavaScript code.
BRIDGE_SCRIPT_TEMPLATE = r"""<script>
(function() {{
  "use strict";
  var allowedOrigins = {origins_json};
  var port = null;
  var queue = [];
  var callSeq = 0;
  var pendingCalls = {{}};

  function isAllowedOrigin(origin) {{
    var test;
    try {{ test = new URL(origin); }} catch (e) {{ return false; }}
    if (test.hostname === "localhost" || test.hostname === "127.0.0.1") return true;
    for (var i = 0; i < allowedOrigins.length; i++) {{
      if (origin === allowedOrigins[i]) return true;
    }}
    return false;
  }}

  function send(message) {{
    if (port) {{ port.postMessage(message); }} else {{ queue.push(message); }}
  }}

  function post(type, payload) {{ send({{ type: type, payload: payload || {{}} }}); }}

  var context = {{}};
  var runtime = {{
    context: context,
    callTool: function(name, args) {{
      var callId = "call-" + (++callSeq);
      return new Promise(function(resolve) {{
        pendingCalls[callId] = resolve;
        post("call-tool", {{ name: name, args: args || {{}}, callId: callId }});
      }});
    }},
    requestDisplayMode: function(mode) {{ post("request-display-mode", {{ mode: mode }}); }},
    setState: function(value) {{ post("set-state", {{ value: value }}); }},
    openLink: function(url) {{ post("open-link", {{ url: url }}); }},
    sendMessage: function(content) {{ post("send-message", {{ content: content }}); }},
    log: function(level, data) {{ post("log", {{ level: level, data: data }}); }},
    notifyHeight: function(height) {{
      window.parent.postMessage({{ type: "notify-height", payload: {{ height: height }} }}, "*");
    }}
  }};

  function onPortMessage(event) {{
    var data = event.data;
    if (!data || typeof data !== "object" || typeof data.type !== "string") return;
    var payload = data.payload || {{}};
    if (data.type === "init") {{
      runtime.hostInfo = payload.hostInfo || null;
      runtime.hostCapabilities = payload.hostCapabilities || null;
      delete payload.hostInfo;
      delete payload.hostCapabilities;
    }}
    if (data.type === "init" || data.type === "update") {{
      for (var key in payload) {{
        if (Object.prototype.hasOwnProperty.call(payload, key)) context[key] = payload[key];
      }}
      if (payload.theme !== undefined) document.documentElement.dataset.theme = payload.theme;
      window.dispatchEvent(new CustomEvent("widgetbridge:context", {{ detail: {{ context: payload }} }}));
    }} else if (data.type === "fence-request") {{
      requestAnimationFrame(function() {{ post("fence-ack", {{ token: payload.token }}); }});
    }} else if (data.type === "call-tool-result") {{
      var resolve = pendingCalls[payload.callId];
      if (resolve) {{ delete pendingCalls[payload.callId]; resolve(payload.result); }}
    }} else if (data.type === "teardown") {{
      window.dispatchEvent(new CustomEvent("widgetbridge:teardown"));
      port.close();
      port = null;
    }}
  }}

  window.addEventListener("message", function(event) {{
    if (event.source !== window.parent) return;
    if (!isAllowedOrigin(event.origin)) {{
      console.warn("[widgetbridge] Rejected message from untrusted origin:", event.origin);
      return;
    }}
    var data = event.data;
    if (port || !data || data.type !== "handshake" || !event.ports || !event.ports.length) return;
    port = event.ports[0];
    port.onmessage = onPortMessage;
    port.start();
    port.postMessage({{ type: "handshake-complete", payload: {{}} }});
    while (queue.length) port.postMessage(queue.shift());
  }});

  window.widgetbridge = runtime;
  window.parent.postMessage({{ type: "ready", payload: {{}} }}, "*");

  var lastHeight = 0;
  var scheduled = false;
  function reportHeight() {{
    scheduled = false;
    var height = document.documentElement.scrollHeight || document.body.scrollHeight;
    if (height > 0 && height !== lastHeight) {{
      lastHeight = height;
      runtime.notifyHeight(height);
    }}
  }}
  function scheduleHeight() {{
    if (scheduled) return;
    scheduled = true;
    requestAnimationFrame(reportHeight);
  }}
  if (document.readyState === "complete") {{ reportHeight(); }}
  else {{ window.addEventListener("load", reportHeight); }}
  if (typeof ResizeObserver !== "undefined") {{
    var observer = new ResizeObserver(scheduleHeight);
    document.addEventListener("DOMContentLoaded", function() {{
      observer.observe(document.documentElement);
      if (document.body) observer.observe(document.body);
    }});
  }}
}})();
</script>
"""


def script_safe_json(value: object) -> str:
    """Serialize to JSON that cannot terminate the enclosing <script> tag."""
    return (
        json.dumps(value)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def render_bridge_script(allowed_parent_origins: Iterable[str]) -> str:
    """Render the bridge script with the parent allow-list baked in.

    Entries are normalized the way the browser reports ``event.origin``
    (no trailing slash, no default port); invalid ones are dropped.
    """
    origins: list[str] = []
    for entry in allowed_parent_origins:
        origin = normalize_origin(entry) if isinstance(entry, str) else None
        if origin is not None and origin not in origins:
            origins.append(origin)
    return BRIDGE_SCRIPT_TEMPLATE.format(origins_json=script_safe_json(origins))
