"""HTTP handler that stops a peer."""

from __future__ import annotations

import logging
from typing import Any, Optional

from werkzeug.wrappers import Request, Response

from peergate.controller.datasharing import _dispatch, _error, _preflight

_ALLOW_ALL = {"Access-Control-Allow-Origin": "*", "Access-Control-Allow-Headers": "*"}


class ServiceController:
    """Serves service requests for a peer."""

    def __init__(self, peer: Any, logger: Optional[logging.Logger] = None) -> None:
        self.peer = peer
        self.log = logger or logging.getLogger(__name__)

    def service_stop_handler(self, request: Request) -> Response:
        return _dispatch(request, {"POST": self._stop_post, "OPTIONS": _preflight})

    def _stop_post(self, request: Request) -> Response:
        try:
            self.peer.stop()
        except Exception as err:
            return _error(f"failed to stop: {err}", 400, _ALLOW_ALL)
        return Response(b"", headers=_ALLOW_ALL)