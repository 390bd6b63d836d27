"""A peer that runs as a separate node program and is driven over its HTTP proxy.

The node program is started with the ``start`` command. Once running it writes
its proxy address and its socket address into ``proxyaddress_<pid>`` and
``socketaddress_<pid>`` in the temporary directory. The socket and the message
registry given in the configuration must be proxies: their proxy address, and
the socket's real address, are set once the program has reported them.
"""

from __future__ import annotations

import functools
import json
import logging
import os
import re
import signal
import subprocess
import sys
import tempfile
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional, Union

import requests

from peergate.controller.registry import _jsonable
from peergate.datasharing import Catalog, ExpandingRing, catalog_from_json, format_duration
from peergate.types import (
    IndexArgument,
    SearchArgument,
    SetRoutingEntryArgument,
    UnicastArgument,
)

Command = Union[str, os.PathLike, Sequence[str]]

_DEFAULT_RETRIES = 10
_DEFAULT_RETRY_WAIT = 0.5
_DEFAULT_STARTUP_WAIT = 1.0


class PeerError(Exception):
    """An error reported by the peer itself, or a failure to run it."""


def _default_logger() -> logging.Logger:
    logger = logging.getLogger("peergate.binnode")
    setting = os.environ.get("BINLOG")
    if setting == "warn":
        logger.setLevel(logging.WARNING)
    elif setting == "no":
        logger.setLevel(logging.CRITICAL + 1)
    else:
        logger.setLevel(logging.INFO)
    return logger


def _command_prefix(binary: Command) -> list[str]:
    if isinstance(binary, (str, os.PathLike)):
        return [os.fspath(binary)]
    return [os.fspath(part) for part in binary]


def _pattern_text(pattern: Union[str, "re.Pattern[str]"]) -> str:
    return pattern if isinstance(pattern, str) else pattern.pattern


def _message_dict(msg: Any) -> dict:
    if isinstance(msg, Mapping):
        return dict(msg)
    value = _jsonable(msg)
    if not isinstance(value, Mapping):
        raise TypeError("message must be a mapping or convertible to one")
    return dict(value)


class BinNode:
    """A peer whose work is done by a node program reached over HTTP.

    ``conf`` provides ``socket`` and ``message_registry`` (both proxies) and the
    node settings ``anti_entropy_interval``, ``heartbeat_interval``,
    ``ack_timeout``, ``total_peers``, ``paxos_id``, ``paxos_proposer_retry``
    (durations in seconds) and optionally ``storage``. ``binary`` is the path of
    the node program or a list of command-line parts that start it.
    """

    def __init__(
        self,
        conf: Any,
        binary: Command,
        *,
        logger: Optional[logging.Logger] = None,
        tempdir: Optional[os.PathLike] = None,
        retries: int = _DEFAULT_RETRIES,
        retry_wait: float = _DEFAULT_RETRY_WAIT,
        startup_wait: float = _DEFAULT_STARTUP_WAIT,
    ) -> None:
        socket = conf.socket
        if not all(hasattr(socket, name) for name in ("set_proxy_address", "set_socket_address")):
            raise TypeError("binnode must have a proxy socket")
        registry = conf.message_registry
        if not hasattr(registry, "set_proxy_address"):
            raise TypeError("binnode must have a proxy registry")

        self.conf = conf
        self.socket = socket
        self.registry = registry
        self.log = logger or _default_logger()
        self.proxy_address: Optional[str] = None
        self._command = _command_prefix(binary)
        self._tempdir = Path(tempdir) if tempdir is not None else None
        self._retries = max(1, retries)
        self._retry_wait = retry_wait
        self._startup_wait = startup_wait
        self._process: Optional[subprocess.Popen] = None
        self._stderr = bytearray()
        self._stderr_lock = threading.Lock()
        self._stderr_thread: Optional[threading.Thread] = None
        self._http = requests.Session()

    # ----------------------------------------------------------------- process

    def _arguments(self) -> list[str]:
        conf = self.conf
        args = [
            "start",
            "--proxyaddr", "127.0.0.1:0",
            "--nodeaddr", self.socket.get_address(),
            "--antientropy", format_duration(getattr(conf, "anti_entropy_interval", 0)),
            "--heartbeat", format_duration(getattr(conf, "heartbeat_interval", 0)),
            "--acktimeout", format_duration(getattr(conf, "ack_timeout", 3)),
            "--totalpeers", str(int(getattr(conf, "total_peers", 1))),
            "--paxosid", str(int(getattr(conf, "paxos_id", 0))),
            "--paxosproposerretry", format_duration(getattr(conf, "paxos_proposer_retry", 5)),
        ]
        get_folder_path = getattr(getattr(conf, "storage", None), "get_folder_path", None)
        if callable(get_folder_path):
            args += ["--storagefolder", os.fspath(get_folder_path())]
        return args

    def _environment(self) -> Optional[dict]:
        if self._tempdir is None:
            return None
        env = dict(os.environ)
        for name in ("TMPDIR", "TEMP", "TMP"):
            env[name] = os.fspath(self._tempdir)
        return env

    def _temp_root(self) -> Path:
        return self._tempdir if self._tempdir is not None else Path(tempfile.gettempdir())

    def _collect_stderr(self, stream: BinaryIO) -> None:
        for chunk in iter(functools.partial(stream.read1, 4096), b""):
            with self._stderr_lock:
                self._stderr.extend(chunk)
            try:
                sys.stderr.write(chunk.decode(errors="replace"))
            except (OSError, ValueError):
                pass

    def _await_file(self, path: Path, what: str) -> str:
        for attempt in range(1, self._retries + 1):
            error: Optional[OSError] = None
            try:
                content = path.read_text()
            except OSError as err:
                error, content = err, ""
            if content:
                path.unlink(missing_ok=True)
                return content
            if attempt == self._retries:
                self.terminate()
                raise PeerError(f"failed to get {what}: {error}")
            self.log.info("waiting %s before retrying", format_duration(self._retry_wait))
            time.sleep(self._retry_wait)
        raise AssertionError("unreachable")

    def start(self) -> None:
        """Start the node program and wait until it reports its addresses."""
        self.log.info("starting with addr %s", self.socket.get_address())
        command = self._command + self._arguments()
        try:
            process = subprocess.Popen(
                command, stdout=None, stderr=subprocess.PIPE, env=self._environment()
            )
        except OSError as err:
            raise PeerError(f"failed to run node (from {os.getcwd()}): {err}") from err

        self._process = process
        self._stderr_thread = threading.Thread(
            target=self._collect_stderr, args=(process.stderr,), daemon=True
        )
        self._stderr_thread.start()

        time.sleep(self._startup_wait)

        root = self._temp_root()
        proxy_addr = self._await_file(root / f"proxyaddress_{process.pid}", "proxy address")
        socket_addr = self._await_file(root / f"socketaddress_{process.pid}", "socket address")

        self.proxy_address = proxy_addr
        self.socket.set_proxy_address(proxy_addr)
        self.registry.set_proxy_address(proxy_addr)
        self.log.info("setting socket address: %s", socket_addr)
        self.socket.set_socket_address(socket_addr)

        with self._stderr_lock:
            output = bytes(self._stderr)
        if output:
            self.terminate()
            raise PeerError(f"failed to start bin: {output.decode(errors='replace')}")

        self.log.info("binary successfully started")

    def terminate(self) -> None:
        """Interrupt the node program, killing it if needed, and wait for it."""
        process = self._process
        if process is None:
            return
        try:
            process.send_signal(signal.SIGINT)
        except (OSError, ValueError) as err:
            self.log.error("failed to stop process: %s", err)
            try:
                process.kill()
            except OSError as kill_err:
                raise PeerError(f"failed to stop: {kill_err}") from kill_err
        try:
            process.wait()
        except OSError as err:
            raise PeerError(f"failed to stop: {err}") from err
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=5)
        self.log.info("binary stopped")

    # -------------------------------------------------------------------- http

    def _url(self, path: str) -> str:
        if self.proxy_address is None:
            raise RuntimeError("node is not started")
        return f"http://{self.proxy_address}{path}"

    @staticmethod
    def _content(response: requests.Response) -> bytes:
        if response.status_code == 400:
            raise PeerError(response.content.decode(errors="replace").rstrip("\n"))
        if response.status_code != 200:
            raise RuntimeError(f"bad status: {response.status_code} {response.reason}")
        return response.content

    def _post(self, path: str, payload: Any) -> bytes:
        response = self._http.post(
            self._url(path),
            data=json.dumps(payload).encode(),
            headers={"Content-Type": "application/json"},
        )
        return self._content(response)

    def _get(self, path: str, params: Optional[dict] = None) -> bytes:
        return self._content(self._http.get(self._url(path), params=params))

    def _post_wrapped(self, path: str, payload: Any, context: str) -> bytes:
        try:
            return self._post(path, payload)
        except PeerError as err:
            raise PeerError(f"{context}: {err}") from err

    # ----------------------------------------------------------------- service

    def stop(self) -> None:
        """Ask the node to stop its peer."""
        self._post_wrapped("/service/stop", "", "failed to post data")

    # ------------------------------------------------------------- datasharing

    def upload(self, data: Union[bytes, BinaryIO]) -> str:
        """Store a blob on the node and return its metahash."""
        response = self._http.post(
            self._url("/datasharing/upload"),
            data=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        return self._content(response).decode()

    def download(self, metahash: str) -> bytes:
        """Fetch the blob referenced by ``metahash``."""
        return self._get("/datasharing/download", {"key": metahash})

    def tag(self, name: str, metahash: str) -> None:
        """Map ``name`` to ``metahash``."""
        self._post_wrapped("/datasharing/naming", [name, metahash], "failed to post upload")

    def resolve(self, name: str) -> str:
        """Return the metahash of ``name``, or an empty string."""
        response = self._http.get(self._url("/datasharing/naming"), params={"name": name})
        if response.status_code != 200:
            raise RuntimeError(f"bad status: {response.status_code} {response.reason}")
        return response.content.decode()

    def get_catalog(self) -> Catalog:
        """Return the node's catalog."""
        return catalog_from_json(self._get("/datasharing/catalog"))

    def update_catalog(self, key: str, peer: str) -> None:
        """Tell the node that ``peer`` holds the data referenced by ``key``."""
        try:
            self._post("/datasharing/catalog", [key, peer])
        except PeerError as err:
            self.log.warning("failed to update catalog: %s", err)

    def search_all(
        self, pattern: Union[str, "re.Pattern[str]"], budget: int, timeout: float
    ) -> list[str]:
        """Return all names matching ``pattern``; ``timeout`` is in seconds."""
        argument = IndexArgument(
            pattern=_pattern_text(pattern), budget=budget, timeout=format_duration(timeout)
        )
        content = self._post_wrapped(
            "/datasharing/searchAll", argument.to_dict(), "failed to post search"
        )
        try:
            names = json.loads(content)
        except ValueError as err:
            raise PeerError(f"failed to unmarshal result: {err}") from err
        if names is None:
            return []
        if not isinstance(names, list):
            raise PeerError("failed to unmarshal result: expected a JSON array")
        return names

    def search_first(self, pattern: Union[str, "re.Pattern[str]"], conf: ExpandingRing) -> str:
        """Return the first name fully matching ``pattern``, or an empty string."""
        argument = SearchArgument(
            pattern=_pattern_text(pattern),
            initial=conf.initial,
            factor=conf.factor,
            retry=conf.retry,
            timeout=format_duration(conf.timeout),
        )
        content = self._post_wrapped(
            "/datasharing/searchFirst", argument.to_dict(), "failed to post search"
        )
        return content.decode()

    # --------------------------------------------------------------- messaging

    def unicast(self, dest: str, msg: Any) -> None:
        """Send ``msg`` to ``dest``."""
        argument = UnicastArgument(dest=dest, msg=_message_dict(msg))
        self._post_wrapped("/messaging/unicast", argument.to_dict(), "failed to post data")

    def broadcast(self, msg: Any) -> None:
        """Send ``msg`` to every peer."""
        self._post_wrapped("/messaging/broadcast", _message_dict(msg), "failed to post data")

    def add_peer(self, *args: str) -> None:
        """Add the given addresses as neighbours."""
        try:
            self._post("/messaging/peers", list(args))
        except PeerError as err:
            self.log.warning("failed to add peers: %s", err)

    def get_routing_table(self) -> dict[str, str]:
        """Return the node's routing table."""
        table = json.loads(self._get("/messaging/routing"))
        if table is None:
            return {}
        if not isinstance(table, dict):
            raise ValueError("routing table must be a JSON object")
        return table

    def set_routing_entry(self, origin: str, relay_addr: str) -> None:
        """Set the relay to use to reach ``origin``."""
        argument = SetRoutingEntryArgument(origin=origin, relay_addr=relay_addr)
        try:
            self._post("/messaging/routing", argument.to_dict())
        except PeerError as err:
            self.log.warning("failed to set routing entry: %s", err)


def binnode_factory(binary_path: Command) -> Callable[[Any], BinNode]:
    """Return a factory building :class:`BinNode` peers that run ``binary_path``."""

    def factory(conf: Any) -> BinNode:
        return BinNode(conf, binary_path)

    return factory