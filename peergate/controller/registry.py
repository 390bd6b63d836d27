"""HTTP handlers exposing the messages processed by a message registry."""

from __future__ import annotations

import dataclasses
import json
import logging
import queue
import threading
from typing import Any, Iterator, Optional

from werkzeug.wrappers import Request, Response

from peergate.controller.datasharing import _dispatch, _error, _preflight

_SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}
_PENDING_PACKETS = 100
_POLL_SECONDS = 0.5


def _jsonable(value: Any) -> Any:
    """Turn dataclasses and objects with ``to_dict`` into JSON-ready values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


class RegistryController:
    """Serves the processed messages of a registry and a packet event stream.

    When ``stop_event`` is given and set, open event streams end.
    """

    def __init__(
        self,
        registry: Any,
        logger: Optional[logging.Logger] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.registry = registry
        self.log = logger or logging.getLogger(__name__)
        self._stop = stop_event

    def messages_handler(self, request: Request) -> Response:
        return _dispatch(request, {"GET": self._messages_get})

    def pkt_notify_handler(self, request: Request) -> Response:
        return _dispatch(request, {"GET": self._pkt_notify_get, "OPTIONS": _preflight})

    def _messages_get(self, request: Request) -> Response:
        marshalled = []
        for message in self.registry.get_messages():
            try:
                marshalled.append(_jsonable(self.registry.marshal_message(message)))
            except Exception as err:
                return _error(f"failed to marshal msg: {err}", 500)
        try:
            body = _dumps(marshalled)
        except (TypeError, ValueError) as err:
            return _error(f"failed to marshal messages: {err}", 500)
        return Response(body)

    def _pkt_notify_get(self, request: Request) -> Response:
        packets: "queue.Queue[Any]" = queue.Queue(_PENDING_PACKETS)

        def notify(message: Any, packet: Any) -> None:
            packets.put(packet)

        self.registry.register_notify(notify)
        return Response(self._events(packets), headers=_SSE_HEADERS)

    def _stopped(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    def _events(self, packets: "queue.Queue[Any]") -> Iterator[bytes]:
        while not self._stopped():
            try:
                packet = packets.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                data = _dumps(_jsonable(packet))
            except (TypeError, ValueError) as err:
                yield f"failed to marshal pkt: {err}\n".encode()
                data = ""
            yield f"data: {data}\n\n".encode()