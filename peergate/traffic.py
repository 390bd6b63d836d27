"""Records packets sent and received on sockets and renders them as graphviz.

Call ``recorder.save_graph("graph.dot", True, False)`` at the end of a run.
"""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, TextIO

from peergate.graph import _graphviz_header

_SENT_COLOR = "#4AB2FF"
_RECEIVED_COLOR = "#A8A8A8"


class _Kind(Enum):
    RECEIVED = "received"
    SENT = "sent"


@dataclass(frozen=True)
class _Item:
    source: str
    dest: str
    kind: _Kind
    packet: Any
    global_counter: int
    type_counter: int


class _Counter:
    """Thread-safe increasing counter; meaningful when all nodes run locally."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value


class Traffic:
    """Packets seen by one socket, numbered by its recorder."""

    def __init__(self, recorder: "TrafficRecorder") -> None:
        self._recorder = recorder
        self._lock = threading.Lock()
        self._items: list[_Item] = []

    def log_recv(self, source: str, dest: str, packet: Any) -> None:
        """Record that ``packet`` was received."""
        self._add(_Kind.RECEIVED, source, dest, packet, self._recorder._received.increment())

    def log_sent(self, source: str, dest: str, packet: Any) -> None:
        """Record that ``packet`` was sent."""
        self._add(_Kind.SENT, source, dest, packet, self._recorder._sent.increment())

    def _add(self, kind: _Kind, source: str, dest: str, packet: Any, counter: int) -> None:
        with self._lock:
            self._items.append(
                _Item(
                    source=source,
                    dest=dest,
                    kind=kind,
                    packet=packet,
                    type_counter=counter,
                    global_counter=self._recorder._global.increment(),
                )
            )

    def _snapshot(self) -> list[_Item]:
        with self._lock:
            return list(self._items)

    def _first_counter(self) -> int:
        with self._lock:
            return self._items[0].global_counter if self._items else sys.maxsize

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class TrafficRecorder:
    """Owns the traffics of a run and the counters shared between them.

    The callables describe a packet: its message type name, an HTML rendering
    of its message, and a (possibly multi-line) rendering of its header.
    """

    def __init__(
        self,
        *,
        message_type: Callable[[Any], str],
        message_html: Callable[[Any], str],
        header_html: Callable[[Any], str],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._message_type = message_type
        self._message_html = message_html
        self._header_html = header_html
        self._clock = clock
        self._global = _Counter()
        self._sent = _Counter()
        self._received = _Counter()
        self._traffics: list[Traffic] = []
        self._lock = threading.Lock()

    def new_traffic(self) -> Traffic:
        """Create and register a new traffic log."""
        traffic = Traffic(self)
        with self._lock:
            self._traffics.append(traffic)
        return traffic

    def generate_graphviz(self, out: TextIO, with_send: bool, with_rcv: bool) -> None:
        """Write a graphviz digraph of the recorded items to ``out``."""
        with self._lock:
            traffics = sorted(self._traffics, key=Traffic._first_counter)

        out.write(_graphviz_header("network_activity", len(traffics), self._clock()))

        for traffic in traffics:
            for item in traffic._snapshot():
                if item.kind is _Kind.SENT and not with_send:
                    continue
                if item.kind is _Kind.RECEIVED and not with_rcv:
                    continue
                out.write(self._render(item))

        out.write("}\n")

    def save_graph(self, path, with_send: bool, with_rcv: bool) -> None:
        """Write the graphviz representation to the file at ``path``."""
        with open(path, "w", encoding="utf-8") as out:
            self.generate_graphviz(out, with_send, with_rcv)

    def _render(self, item: _Item) -> str:
        color = _RECEIVED_COLOR if item.kind is _Kind.RECEIVED else _SENT_COLOR
        try:
            packet_str = self._message_html(item.packet)
        except Exception as err:  # a packet that cannot be described is still drawn
            packet_str = "error in getting message:" + str(err)
        header_str = self._header_html(item.packet).replace("\n", "<br/>")
        message_str = (
            "<font point-size='4'><br/></font>"
            f"<font point-size='11' color='#777777'>{packet_str}</font>"
            "<font point-size='4'><br/><br/></font>"
            f"<font point-size='10' color='#aaaaaa'>{header_str}</font>"
        )
        return (
            f'"{item.source}" -> "{item.dest}" '
            f"[ label = < <font color='#303030'><b>{item.type_counter}</b> "
            f"<font point-size='10'>({item.global_counter})</font> - "
            f"{self._message_type(item.packet)}</font><br/>{message_str}> "
            f'color="{color}" ];\n'
        )