"""FastAPI routes for the widget simulator."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ValidationError

from widgetbridge import __version__
from widgetbridge.config.schema import Config
from widgetbridge.document.builder import error_document
from widgetbridge.errors import RejectedOriginError
from widgetbridge.host import HostSession, WidgetHost
from widgetbridge.security.csp import ResourceCSP
from widgetbridge.server.websocket import ConnectionManager

log = logging.getLogger(__name__)


class OpenWidgetRequest(BaseModel):
    """Body of ``POST /api/instances``."""

    origin: str | None = None
    instance_id: str | None = None


def create_app(session: HostSession | None = None, config: Config | None = None) -> FastAPI:
    """Create the simulator application.

    The session and the websocket manager live on ``app.state``.
    """
    config = config or (session.config if session else Config())
    session = session or HostSession(config)

    app = FastAPI(
        title="widgetbridge simulator",
        description="Host-side simulator for sandboxed widgets",
        version=__version__,
    )
    app.state.session = session
    app.state.config = config
    app.state.connections = ConnectionManager()

    for host in session.hosts():
        _mirror_updates(app, host)
    session.opened.connect(lambda host: _mirror_updates(app, host))
    session.closed.connect(lambda host: app.state.connections.close_instance(host.id))

    _register_routes(app)
    return app


def _mirror_updates(app: FastAPI, host: WidgetHost) -> None:
    connections: ConnectionManager = app.state.connections

    def on_changed(changed: frozenset[str]) -> Any:
        payload = host.store.snapshot().to_wire(set(changed))
        return connections.broadcast(host.id, {"type": "update", "payload": payload})

    host.store.changed.connect(on_changed)


def _get_host(app: FastAPI, instance_id: str) -> WidgetHost:
    host = app.state.session.get(instance_id)
    if host is None:
        raise HTTPException(status_code=404, detail=f"Instance {instance_id} not found")
    return host


def _summary(host: WidgetHost) -> dict[str, Any]:
    return {
        "id": host.id,
        "state": host.state.value,
        "queued": host.instance.queued,
        "displayMode": host.store.get("display_mode"),
        "height": host.height,
    }


def _register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        session: HostSession = app.state.session
        return {
            "status": "ok",
            "instances": session.count,
            "connections": app.state.connections.count(),
        }

    @app.get("/frame", response_class=HTMLResponse)
    async def frame(
        script: str = Query(..., description="URL of the widget bundle"),
        theme: str = Query("dark"),
        connect: list[str] = Query(default=[]),
        resource: list[str] = Query(default=[]),
    ) -> HTMLResponse:
        """Bootstrap document for a widget bundle."""
        session: HostSession = app.state.session
        if not session.policy.is_allowed_url(script):
            return HTMLResponse(error_document(), status_code=400)

        csp = ResourceCSP(connect_domains=connect, resource_domains=resource)
        document = session.documents.build(script, theme, csp)
        policy = session.documents.csp_for(script, csp)
        return HTMLResponse(document, headers={"Content-Security-Policy": policy})

    @app.get("/api/instances")
    async def list_instances() -> list[dict[str, Any]]:
        return [_summary(host) for host in app.state.session.hosts()]

    @app.post("/api/instances", status_code=201)
    async def open_instance(request: OpenWidgetRequest | None = None) -> dict[str, Any]:
        request = request or OpenWidgetRequest()
        try:
            host = app.state.session.open_widget(
                origin=request.origin, instance_id=request.instance_id
            )
        except RejectedOriginError as e:
            raise HTTPException(status_code=403, detail=str(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return _summary(host)

    @app.delete("/api/instances/{instance_id}")
    async def close_instance(instance_id: str) -> dict[str, Any]:
        host = _get_host(app, instance_id)
        host.close()
        return {"id": instance_id, "state": host.state.value}

    @app.get("/api/instances/{instance_id}/snapshot")
    async def instance_snapshot(instance_id: str) -> dict[str, Any]:
        return _get_host(app, instance_id).store.snapshot().to_wire()

    @app.post("/api/instances/{instance_id}/context")
    async def update_context(
        instance_id: str, changes: dict[str, Any] = Body(...)
    ) -> dict[str, Any]:
        """Apply a partial snapshot (wire or field names) through the store."""
        host = _get_host(app, instance_id)
        try:
            changed = host.store.update(**changes)
        except KeyError as e:
            raise HTTPException(status_code=422, detail=str(e.args[0])) from e
        except (ValidationError, ValueError) as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return {
            "changed": sorted(changed),
            "snapshot": host.store.snapshot().to_wire(),
        }

    @app.post("/api/instances/{instance_id}/state")
    async def inject_state(
        instance_id: str, state: dict[str, Any] | None = Body(default=None)
    ) -> dict[str, Any]:
        """Debug injection of widget state."""
        host = _get_host(app, instance_id)
        host.inject_state(state)
        return {"widgetState": host.store.get("widget_state")}

    @app.websocket("/ws/{instance_id}")
    async def websocket_endpoint(websocket: WebSocket, instance_id: str) -> None:
        """Mirror context updates for one instance."""
        connections: ConnectionManager = app.state.connections
        host = app.state.session.get(instance_id)
        if host is None:
            await websocket.close(code=4404, reason=f"Instance {instance_id} not found")
            return

        await connections.connect(websocket, instance_id)
        try:
            await websocket.send_json({"type": "init", "payload": host.store.snapshot().to_wire()})
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            pass
        finally:
            await connections.disconnect(websocket, instance_id)
