import io
import random
import re
from datetime import datetime

import pytest

from peergate.graph import Graph

_EDGE = re.compile(r'"(\d+)" -> "(\d+)";')
_FIXED = datetime(2021, 3, 5, 14, 7, 9)


class FakePeer:
    def __init__(self, addr):
        self.addr = addr
        self.added = []

    def add_peer(self, *addrs):
        self.added.extend(addrs)


def _peers(n):
    return [FakePeer(f"127.0.0.1:{k + 1}") for k in range(n)]


def _generate(p, peers, seed=1):
    out = io.StringIO()
    Graph(p, rng=random.Random(seed), clock=lambda: _FIXED).generate(out, peers)
    return out.getvalue()


def _edges(text):
    return [(int(a) - 1, int(b) - 1) for a, b in _EDGE.findall(text)]


def test_header_and_footer():
    peers = _peers(4)
    text = _generate(1, peers)
    assert text.startswith("digraph network_topology {\n")
    assert f"label = <Network Diagram of {len(peers)} nodes" in text
    assert "(generated 5 Mar 21 - 14:07:09)" in text
    assert text.endswith("}\n")


def test_full_probability_gives_complete_graph():
    n = 6
    edges = _edges(_generate(1, _peers(n)))
    pairs = {frozenset(e) for e in edges}
    assert len(edges) == len(pairs) == n * (n - 1) // 2


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_sparse_graph_is_connected(seed):
    peers = _peers(10)
    edges = _edges(_generate(0.2, peers, seed))
    adjacency = {k: set() for k in range(len(peers))}
    for a, b in edges:
        adjacency[a].add(b)
        adjacency[b].add(a)
    seen, todo = {0}, [0]
    while todo:
        for nxt in adjacency[todo.pop()] - seen:
            seen.add(nxt)
            todo.append(nxt)
    assert seen == set(adjacency)


def test_peers_receive_their_outgoing_edges():
    peers = _peers(8)
    edges = _edges(_generate(0.5, peers, seed=7))
    for index, peer in enumerate(peers):
        expected = [peers[b].addr for a, b in edges if a == index]
        assert peer.added == expected


def test_single_peer_has_no_edges():
    peers = _peers(1)
    assert _edges(_generate(0.5, peers)) == []
    assert peers[0].added == []


def test_zero_probability_is_rejected():
    with pytest.raises(ValueError):
        Graph(0).generate(io.StringIO(), _peers(2))