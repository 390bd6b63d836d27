"""HTTP proxy in front of a peer: routing, request tracing and lifecycle."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from peergate.controller.datasharing import DataSharingController, _error
from peergate.controller.messaging import MessagingController
from peergate.controller.registry import RegistryController
from peergate.controller.service import ServiceController
from peergate.controller.socket import SocketController

# Message read by a supervising process to learn the proxy address.
READY_MSG = "proxy server is ready to handle requests at '%s'"

REQUEST_ID_HEADER = "X-Request-Id"
_REQUEST_ID_KEY = "peergate.request_id"

WSGIApp = Callable[[dict, Callable], Iterable[bytes]]


def _default_logger() -> logging.Logger:
    logger = logging.getLogger("peergate.httpnode")
    setting = os.environ.get("HTTPLOG")
    if setting == "warn":
        logger.setLevel(logging.WARNING)
    elif setting == "no":
        logger.setLevel(logging.CRITICAL + 1)
    else:
        logger.setLevel(logging.INFO)
    return logger


def build_app(node: Any, socket: Any, registry: Any, logger: logging.Logger) -> WSGIApp:
    """Return the WSGI application routing every endpoint to its controller."""
    messaging = MessagingController(node, logger)
    sockets = SocketController(socket, logger)
    registry_ctrl = RegistryController(registry, logger)
    service = ServiceController(node, logger)
    datasharing = DataSharingController(node, logger)

    routes: dict[str, Callable[[Request], Response]] = {
        "/messaging/peers": messaging.peer_handler,
        "/messaging/routing": messaging.routing_handler,
        "/messaging/unicast": messaging.unicast_handler,
        "/messaging/broadcast": messaging.broadcast_handler,
        "/socket/ins": sockets.ins_handler,
        "/socket/outs": sockets.outs_handler,
        "/socket/address": sockets.address_handler,
        "/registry/messages": registry_ctrl.messages_handler,
        "/registry/pktnotify": registry_ctrl.pkt_notify_handler,
        "/service/stop": service.service_stop_handler,
        "/datasharing/upload": datasharing.upload_handler,
        "/datasharing/download": datasharing.download_handler,
        "/datasharing/naming": datasharing.naming_handler,
        "/datasharing/catalog": datasharing.catalog_handler,
        "/datasharing/searchAll": datasharing.search_all_handler,
        "/datasharing/searchFirst": datasharing.search_first_handler,
    }

    @Request.application
    def app(request: Request) -> Response:
        handler = routes.get(request.path)
        if handler is None:
            logger.error("wrong endpoint: %s", request.path)
            return _error("not authorized", 502)
        return handler(request)

    return app


def tracing(next_request_id: Callable[[], str], app: WSGIApp) -> WSGIApp:
    """Give each request an id, taken from its header or generated, and echo it."""

    def traced(environ: dict, start_response: Callable) -> Iterable[bytes]:
        request_id = environ.get("HTTP_X_REQUEST_ID") or next_request_id()
        environ[_REQUEST_ID_KEY] = request_id

        def start(status, headers, exc_info=None):
            headers = [(k, v) for k, v in headers if k.lower() != REQUEST_ID_HEADER.lower()]
            headers.append((REQUEST_ID_HEADER, request_id))
            return start_response(status, headers, exc_info)

        return app(environ, start)

    return traced


def logging_middleware(logger: logging.Logger, app: WSGIApp) -> WSGIApp:
    """Log every request once the application has handled it."""

    def logged(environ: dict, start_response: Callable) -> Iterable[bytes]:
        try:
            return app(environ, start_response)
        finally:
            logger.info(
                "requestID=%s method=%s url=%s remoteAddr=%s agent=%s",
                environ.get(_REQUEST_ID_KEY, "unknown"),
                environ.get("REQUEST_METHOD", ""),
                environ.get("PATH_INFO", ""),
                environ.get("REMOTE_ADDR", ""),
                environ.get("HTTP_USER_AGENT", ""),
            )

    return logged


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid address {address!r}")
    return host or "0.0.0.0", int(port)


class HTTPNode:
    """Runs a peer together with the HTTP server that controls it."""

    def __init__(
        self,
        peer: Any,
        socket: Any,
        registry: Any,
        logger: Optional[logging.Logger] = None,
        tempdir: Optional[os.PathLike] = None,
    ) -> None:
        self.peer = peer
        self.socket = socket
        self.log = logger or _default_logger()
        self._tempdir = Path(tempdir) if tempdir is not None else Path(tempfile.gettempdir())
        self._app = tracing(
            lambda: str(time.time_ns()),
            logging_middleware(self.log, build_app(peer, socket, registry, self.log)),
        )
        self._server = None
        self._thread: Optional[threading.Thread] = None
        self._proxy_path: Optional[Path] = None
        self.proxy_address: Optional[str] = None

    def wsgi_app(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        """The WSGI entry point serving the node's endpoints."""
        return self._app(environ, start_response)

    def start_and_listen(self, proxy_addr: str) -> None:
        """Start the peer, then serve HTTP on ``proxy_addr`` in the background."""
        try:
            self.peer.start()
        except Exception as err:
            raise RuntimeError(f"failed to start node: {err}") from err

        self.log.info("proxy server is starting (peer %s)...", self.socket.get_address())
        host, port = _split_address(proxy_addr)
        try:
            server = make_server(host, port, self.wsgi_app, threaded=True)
        except OSError as err:
            raise RuntimeError(f"failed to create conn '{proxy_addr}': {err}") from err

        bound_host, bound_port = server.server_address[:2]
        address = f"{bound_host}:{bound_port}"
        self.log.info(READY_MSG, address)

        proxy_path = self._tempdir / f"proxyaddress_{os.getpid()}"
        try:
            proxy_path.write_text(address)
        except OSError as err:
            server.server_close()
            raise RuntimeError(f"failed to write proxy address: {err}") from err

        self._server = server
        self._proxy_path = proxy_path
        self.proxy_address = address
        self._thread = threading.Thread(target=server.serve_forever, daemon=True)
        self._thread.start()

    def _stop_server(self) -> None:
        if self._server is None:
            return
        self.log.info("proxy server is shutting down...")
        if self._proxy_path is not None:
            self._proxy_path.unlink(missing_ok=True)
            self._proxy_path = None
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None
        self.log.info("server stopped")

    def stop_and_close(self) -> None:
        """Stop the HTTP server, then the peer."""
        self._stop_server()
        self.log.info("proxy stopped")
        try:
            self.peer.stop()
        except Exception as err:
            raise RuntimeError(f"failed to close stop node: {err}") from err
        self.log.info("node stopped")