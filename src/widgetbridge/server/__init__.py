"""Simulator server: HTTP endpoints and live update sockets for widget hosts."""

from widgetbridge.server.app_server import SimulatorServer
from widgetbridge.server.routes import create_app
from widgetbridge.server.websocket import ConnectionManager

__all__ = ["ConnectionManager", "SimulatorServer", "create_app"]
