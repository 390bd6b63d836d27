"""HTTP handlers exposing a peer's data-sharing functions."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Mapping, Optional

from werkzeug.wrappers import Request, Response

from peergate.datasharing import ExpandingRing, catalog_to_json, parse_duration
from peergate.types import IndexArgument, SearchArgument

_ALLOW_ORIGIN = {"Access-Control-Allow-Origin": "*"}
_ALLOW_ALL = {"Access-Control-Allow-Origin": "*", "Access-Control-Allow-Headers": "*"}

Handler = Callable[[Request], Response]


def _error(message: str, status: int, headers: Optional[Mapping[str, str]] = None) -> Response:
    """Plain-text error response; ``headers`` already set on the reply are kept."""
    response = Response(message + "\n", status=status, headers=dict(headers or {}))
    response.headers["Content-Type"] = "text/plain; charset=utf-8"
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _preflight(request: Request) -> Response:
    return Response(b"", headers=_ALLOW_ALL)


def _dispatch(request: Request, handlers: Mapping[str, Handler]) -> Response:
    handler = handlers.get(request.method)
    if handler is None:
        return _error("forbidden method", 405)
    return handler(request)


def _load_json(buf: bytes) -> Any:
    """Decode a JSON body, treating ``null`` as an empty object."""
    document = json.loads(buf)
    return {} if document is None else document


def _parse_pair(buf: bytes) -> tuple[str, str]:
    """Decode a JSON array of up to two strings; missing entries are empty."""
    document = json.loads(buf)
    if document is None:
        return "", ""
    if not isinstance(document, list) or not all(
        item is None or isinstance(item, str) for item in document
    ):
        raise ValueError("expected a JSON array of strings")
    first, second = ([item or "" for item in document] + ["", ""])[:2]
    return first, second


class DataSharingController:
    """Serves upload, download, naming, catalog and search requests for a node."""

    def __init__(self, node: Any, logger: Optional[logging.Logger] = None) -> None:
        self.node = node
        self.log = logger or logging.getLogger(__name__)

    def upload_handler(self, request: Request) -> Response:
        return _dispatch(request, {"POST": self._upload_post, "OPTIONS": _preflight})

    def download_handler(self, request: Request) -> Response:
        return _dispatch(request, {"GET": self._download_get, "OPTIONS": _preflight})

    def naming_handler(self, request: Request) -> Response:
        return _dispatch(
            request,
            {"POST": self._naming_post, "GET": self._naming_get, "OPTIONS": _preflight},
        )

    def catalog_handler(self, request: Request) -> Response:
        return _dispatch(
            request,
            {"POST": self._catalog_post, "GET": self._catalog_get, "OPTIONS": _preflight},
        )

    def search_all_handler(self, request: Request) -> Response:
        return _dispatch(request, {"POST": self._index_post, "OPTIONS": _preflight})

    def search_first_handler(self, request: Request) -> Response:
        return _dispatch(request, {"POST": self._search_post, "OPTIONS": _preflight})

    def _upload_post(self, request: Request) -> Response:
        try:
            metahash = self.node.upload(request.stream)
        except Exception as err:
            return _error(f"failed to upload: {err}", 400, _ALLOW_ORIGIN)
        return Response(metahash, headers=_ALLOW_ORIGIN)

    def _download_get(self, request: Request) -> Response:
        key = request.args.get("key", "")
        if not key:
            return _error("'key' argument not found or empty", 400, _ALLOW_ORIGIN)
        try:
            data = self.node.download(key)
        except Exception as err:
            return _error(f"failed to download: {err}", 400, _ALLOW_ORIGIN)
        return Response(bytes(data), headers=_ALLOW_ORIGIN)

    def _naming_post(self, request: Request) -> Response:
        try:
            name, metahash = _parse_pair(request.get_data())
        except ValueError as err:
            return _error(f"failed to unmarshal arguments: {err}", 500, _ALLOW_ORIGIN)
        try:
            self.node.tag(name, metahash)
        except Exception as err:
            return _error(f"failed to tag: {err}", 400, _ALLOW_ORIGIN)
        return Response(b"", headers=_ALLOW_ORIGIN)

    def _naming_get(self, request: Request) -> Response:
        name = request.args.get("name", "")
        if not name:
            return _error("'name' argument not found or empty", 400, _ALLOW_ORIGIN)
        return Response(self.node.resolve(name), headers=_ALLOW_ORIGIN)

    def _catalog_post(self, request: Request) -> Response:
        try:
            key, peer = _parse_pair(request.get_data())
        except ValueError as err:
            return _error(f"failed to unmarshal arguments: {err}", 500, _ALLOW_ORIGIN)
        self.node.update_catalog(key, peer)
        return Response(b"", headers=_ALLOW_ORIGIN)

    def _catalog_get(self, request: Request) -> Response:
        try:
            body = catalog_to_json(self.node.get_catalog())
        except (TypeError, ValueError) as err:
            return _error(f"failed to marshal catalog: {err}", 500, _ALLOW_ORIGIN)
        return Response(
            body, headers={**_ALLOW_ORIGIN, "Content-Type": "application/json"}
        )

    def _index_post(self, request: Request) -> Response:
        try:
            arguments = IndexArgument.from_dict(_load_json(request.get_data()))
        except ValueError as err:
            return _error(f"failed to unmarshal arguments: {err}", 500, _ALLOW_ORIGIN)
        try:
            pattern = re.compile(arguments.pattern)
        except re.error as err:
            return _error(f"failed to parse regex: {err}", 400, _ALLOW_ORIGIN)
        try:
            wait = parse_duration(arguments.timeout)
        except ValueError as err:
            return _error(f"failed to parse wait: {err}", 400, _ALLOW_ORIGIN)
        try:
            names = self.node.search_all(pattern, arguments.budget, wait)
        except Exception as err:
            return _error(f"failed to index: {err}", 400, _ALLOW_ORIGIN)
        try:
            body = json.dumps(None if names is None else list(names), separators=(",", ":"))
        except (TypeError, ValueError) as err:
            return _error(f"failed to marshal names: {err}", 500, _ALLOW_ORIGIN)
        return Response(body, headers=_ALLOW_ORIGIN)

    def _search_post(self, request: Request) -> Response:
        try:
            arguments = SearchArgument.from_dict(_load_json(request.get_data()))
        except ValueError as err:
            return _error(f"failed to unmarshal arguments: {err}", 500, _ALLOW_ORIGIN)
        try:
            pattern = re.compile(arguments.pattern)
        except re.error as err:
            return _error(f"failed to parse regex: {err}", 400, _ALLOW_ORIGIN)
        try:
            ring = ExpandingRing(
                initial=arguments.initial,
                factor=arguments.factor,
                retry=arguments.retry,
                timeout=parse_duration(arguments.timeout),
            )
        except ValueError as err:
            return _error(f"failed to parse wait: {err}", 400, _ALLOW_ORIGIN)
        try:
            name = self.node.search_first(pattern, ring)
        except Exception as err:
            return _error(f"failed to search: {err}", 400, _ALLOW_ORIGIN)
        return Response(name, headers=_ALLOW_ORIGIN)