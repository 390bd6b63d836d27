"""Random connected network topologies, written out as graphviz."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Protocol, TextIO

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _graphviz_header(name: str, count: int, now: datetime) -> str:
    stamp = f"{now.day} {_MONTHS[now.month - 1]} {now:%y - %H:%M:%S}"
    return (
        f"digraph {name} {{\n"
        'labelloc="t";'
        f"label = <Network Diagram of {count} nodes <font point-size='10'>"
        f"<br/>(generated {stamp})</font>>;\n\n"
        'graph [fontname = "helvetica"];\n'
        'graph [fontname = "helvetica"];\n'
        'node [fontname = "helvetica"];\n'
        'edge [fontname = "helvetica"];\n\n'
    )


class _Peer(Protocol):
    addr: str

    def add_peer(self, *addrs: str) -> None: ...


@dataclass
class Graph:
    """Generates a pseudo-random topology where each edge exists with probability ``p``."""

    p: float
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], datetime] = datetime.now

    def generate(self, out: TextIO, peers: Iterable[_Peer]) -> None:
        """Connect every peer to at least one earlier peer and describe the result."""
        peers = list(peers)
        if len(peers) > 1 and self.p <= 0:
            raise ValueError("edge probability must be positive to connect peers")

        out.write(_graphviz_header("network_topology", len(peers), self.clock()))

        by_addr = {peer.addr: peer for peer in peers}
        neighbours: dict[str, list[str]] = {}

        for i in range(1, len(peers)):
            connected = False
            while not connected:
                for j in range(i):
                    if self.rng.random() >= self.p:
                        continue
                    connected = True
                    src, dst = (j, i) if self.rng.random() > 0.5 else (i, j)
                    # Labels start at 1, as node ports usually do.
                    out.write(f'"{src + 1}" -> "{dst + 1}";\n')
                    neighbours.setdefault(peers[src].addr, []).append(peers[dst].addr)

        for addr, addrs in neighbours.items():
            by_addr[addr].add_peer(*addrs)

        out.write("}\n")