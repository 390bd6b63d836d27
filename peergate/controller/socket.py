"""HTTP handlers exposing a socket's traffic and address."""

from __future__ import annotations

import logging
from typing import Any, Optional

from werkzeug.wrappers import Request, Response

from peergate.controller.datasharing import _dispatch, _error
from peergate.controller.registry import _dumps, _jsonable

_ALLOW_ALL = {"Access-Control-Allow-Origin": "*", "Access-Control-Allow-Headers": "*"}


def _packets_json(packets: Any) -> str:
    if packets is None:
        return _dumps(None)
    return _dumps([_jsonable(packet) for packet in packets])


class SocketController:
    """Serves the packets received and sent by a socket, and its address."""

    def __init__(self, socket: Any, logger: Optional[logging.Logger] = None) -> None:
        self.socket = socket
        self.log = logger or logging.getLogger(__name__)

    def ins_handler(self, request: Request) -> Response:
        return _dispatch(request, {"GET": self._ins_get})

    def outs_handler(self, request: Request) -> Response:
        return _dispatch(request, {"GET": self._outs_get})

    def address_handler(self, request: Request) -> Response:
        return _dispatch(request, {"GET": self._address_get})

    def _ins_get(self, request: Request) -> Response:
        try:
            body = _packets_json(self.socket.get_ins())
        except (TypeError, ValueError) as err:
            return _error(f"failed to marshal ins: {err}", 500)
        return Response(body)

    def _outs_get(self, request: Request) -> Response:
        try:
            body = _packets_json(self.socket.get_outs())
        except (TypeError, ValueError) as err:
            return _error(f"failed to marshal outs: {err}", 500)
        return Response(body)

    def _address_get(self, request: Request) -> Response:
        return Response(self.socket.get_address(), headers=_ALLOW_ALL)