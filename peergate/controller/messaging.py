"""HTTP handlers exposing a peer's messaging functions."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional

from werkzeug.wrappers import Request, Response

from peergate.controller.datasharing import _dispatch, _error, _load_json, _preflight
from peergate.types import SetRoutingEntryArgument, UnicastArgument, parse_add_peer_argument

_ALLOW_ALL = {"Access-Control-Allow-Origin": "*", "Access-Control-Allow-Headers": "*"}
_JSON_CORS = {"Content-Type": "application/json", "Access-Control-Allow-Origin": "*"}


class MessagingController:
    """Serves peer, routing, unicast and broadcast requests for a node.

    ``graph_renderer`` turns a routing table into graphviz text; without it the
    table's own ``display_graph(out)`` method is used.
    """

    def __init__(
        self,
        node: Any,
        logger: Optional[logging.Logger] = None,
        graph_renderer: Optional[Callable[[Any], str]] = None,
    ) -> None:
        self.node = node
        self.log = logger or logging.getLogger(__name__)
        self._graph_renderer = graph_renderer

    def peer_handler(self, request: Request) -> Response:
        return _dispatch(request, {"POST": self._peer_post, "OPTIONS": _preflight})

    def routing_handler(self, request: Request) -> Response:
        return _dispatch(
            request,
            {"GET": self._routing_get, "POST": self._routing_post, "OPTIONS": _preflight},
        )

    def unicast_handler(self, request: Request) -> Response:
        return _dispatch(request, {"POST": self._unicast_post, "OPTIONS": _preflight})

    def broadcast_handler(self, request: Request) -> Response:
        return _dispatch(request, {"POST": self._broadcast_post, "OPTIONS": _preflight})

    def _peer_post(self, request: Request) -> Response:
        try:
            peers = parse_add_peer_argument(request.get_data())
        except ValueError as err:
            return _error(f"failed to unmarshal addPeerArgument: {err}", 500)
        self.log.info("got the following peers: %s", peers)
        self.node.add_peer(*peers)
        return Response(b"", headers=_ALLOW_ALL)

    def _render_graph(self, table: Any) -> Optional[str]:
        if self._graph_renderer is not None:
            return self._graph_renderer(table)
        display = getattr(table, "display_graph", None)
        if display is None:
            return None
        out = io.StringIO()
        display(out)
        return out.getvalue()

    def _routing_get(self, request: Request) -> Response:
        table = self.node.get_routing_table()
        if request.values.get("graphviz") == "on":
            graph = self._render_graph(table)
            if graph is None:
                return _error("routing table cannot be displayed as a graph", 500, _JSON_CORS)
            return Response(graph, headers=_JSON_CORS)
        try:
            body = json.dumps(dict(table), indent="\t", sort_keys=True) + "\n"
        except (TypeError, ValueError):
            return _error("failed to marshal routing table", 500, _JSON_CORS)
        return Response(body, headers=_JSON_CORS)

    def _routing_post(self, request: Request) -> Response:
        buf = request.get_data()
        self.log.info("got the following message: %s", buf)
        try:
            entry = SetRoutingEntryArgument.from_dict(_load_json(buf))
        except ValueError as err:
            return _error(f"failed to unmarshal addPeerArgument: {err}", 500, _JSON_CORS)
        self.log.info("got the following message: %s", entry)
        self.node.set_routing_entry(entry.origin, entry.relay_addr)
        return Response(b"", headers=_JSON_CORS)

    def _unicast_post(self, request: Request) -> Response:
        buf = request.get_data()
        self.log.info("got the following message: %s", buf)
        try:
            argument = UnicastArgument.from_dict(_load_json(buf))
        except ValueError as err:
            return _error(f"failed to unmarshal unicast argument: {err}", 500, _ALLOW_ALL)
        try:
            self.node.unicast(argument.dest, argument.msg)
        except Exception as err:
            return _error(str(err), 400, _ALLOW_ALL)
        return Response(b"", headers=_ALLOW_ALL)

    def _broadcast_post(self, request: Request) -> Response:
        buf = request.get_data()
        self.log.info("broadcast got the following message: %s", buf)
        try:
            msg = _load_json(buf)
            if not isinstance(msg, Mapping):
                raise ValueError("message must be a JSON object")
        except ValueError as err:
            return _error(f"failed to unmarshal broadcast argument: {err}", 500, _ALLOW_ALL)
        try:
            self.node.broadcast(dict(msg))
        except Exception as err:
            return _error(str(err), 400, _ALLOW_ALL)
        return Response(b"", headers=_ALLOW_ALL)