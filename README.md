# peergate

Tools for running and driving nodes of a gossip-based peer-to-peer system
over HTTP:

- **An HTTP gateway** (`peergate.httpnode.HTTPNode`) that puts a peer behind a
  small JSON/HTTP API so that other processes can drive it.
- **A remote-node client** (`peergate.binnode.BinNode`) that starts a node
  program, waits for the addresses it reports, and offers the operations of a
  peer by talking to that program's HTTP gateway.
- **Topology and traffic helpers** (`peergate.graph.Graph`,
  `peergate.traffic.TrafficRecorder`) that build random connected network
  topologies and write Graphviz diagrams of the packets exchanged.

## HTTP API

`HTTPNode(peer, socket, registry)` serves these endpoints; the WSGI
application alone is available from `peergate.httpnode.build_app` or
`HTTPNode.wsgi_app`. Any other path answers `502 Bad Gateway`, and a method
not listed answers `405`.

| Path                       | Methods            | Purpose                                   |
|----------------------------|--------------------|-------------------------------------------|
| `/messaging/peers`         | POST               | add peers (JSON list of addresses)        |
| `/messaging/routing`       | GET, POST          | read the routing table / set an entry     |
| `/messaging/unicast`       | POST               | send a message to one destination         |
| `/messaging/broadcast`     | POST               | broadcast a message                       |
| `/socket/ins`              | GET                | packets received so far                   |
| `/socket/outs`             | GET                | packets sent so far                       |
| `/socket/address`          | GET                | the node's socket address                 |
| `/registry/messages`       | GET                | messages processed by the registry        |
| `/registry/pktnotify`      | GET                | server-sent events of processed packets   |
| `/service/stop`            | POST               | stop the peer                             |
| `/datasharing/upload`      | POST               | upload a blob, returns its metahash       |
| `/datasharing/download`    | GET `?key=`        | download a blob by metahash               |
| `/datasharing/naming`      | GET `?name=`, POST | resolve a name / tag a name               |
| `/datasharing/catalog`     | GET, POST          | read / update the catalog                 |
| `/datasharing/searchAll`   | POST               | search all names matching a pattern       |
| `/datasharing/searchFirst` | POST               | expanding-ring search for a full match    |

`GET /messaging/routing?graphviz=on` returns the routing table as Graphviz
text instead of JSON. Every request gets an `X-Request-Id` header, taken from
the request or generated.

Errors reported by the peer come back as `400 Bad Request` with the error text
as the body; `BinNode` raises them as `peergate.binnode.PeerError`.

Request bodies use the argument types in `peergate.types`, for example
`IndexArgument` for `searchAll`:

```json
{"Pattern": ".*", "Budget": 2, "Timeout": "2s"}
```

and `SearchArgument` for `searchFirst`:

```json
{"Pattern": ".*", "Initial": 2, "Factor": 2, "Retry": 2, "Timeout": "2s"}
```

Durations are written in the compact form `"1.5s"`, `"300ms"`, `"1h2m0s"`;
`peergate.datasharing.parse_duration` and `format_duration` convert between
that text and seconds.

`start_and_listen("127.0.0.1:0")` starts the peer, serves HTTP in a
background thread and writes the bound address to `proxyaddress_<pid>` in the
temporary directory; `stop_and_close()` stops the server and then the peer.
The `HTTPLOG` environment variable set to `warn` or `no` lowers or silences
its logging.

## Driving a remote node

`BinNode` starts a node program with `start --proxyaddr ... --nodeaddr ...`
and the node settings from its configuration, then reads the files
`proxyaddress_<pid>` and `socketaddress_<pid>` that the program writes to the
temporary directory. The configuration's `socket` must have
`set_proxy_address` and `set_socket_address`, and its `message_registry` must
have `set_proxy_address`.

```python
from peergate.binnode import binnode_factory, PeerError
from peergate.datasharing import ExpandingRing

make_node = binnode_factory("./node-binary")
node = make_node(conf)
node.start()

metahash = node.upload(b"hello world")
node.tag("greeting", metahash)
assert node.resolve("greeting") == metahash

names = node.search_all(".*", 3, 2.0)
first = node.search_first("greet.*", ExpandingRing(initial=1, factor=2, retry=3, timeout=2.0))

try:
    node.download("does-not-exist")
except PeerError as err:
    print("peer refused:", err)

node.stop()
node.terminate()
```

The `BINLOG` environment variable set to `warn` or `no` lowers or silences
its logging.

## Topologies and traffic diagrams

`Graph(p).generate(out, peers)` connects every peer (objects with an `addr`
attribute and an `add_peer(*addrs)` method) to at least one earlier peer and
writes the resulting digraph.

```python
import io
from peergate.graph import Graph
from peergate.traffic import TrafficRecorder

out = io.StringIO()
Graph(0.2).generate(out, nodes)

recorder = TrafficRecorder(
    message_type=lambda pkt: pkt.msg.type,
    message_html=lambda pkt: str(pkt.msg),
    header_html=lambda pkt: str(pkt.header),
)
traffic = recorder.new_traffic()
traffic.log_sent("127.0.0.1:1", "127.0.0.1:2", packet)
recorder.save_graph("traffic.dot", True, False)
```

The `.dot` output can be rendered with Graphviz.

## What this package does not do

It contains no peer: gossip, routing, file sharing, naming and consensus are
done by the peer object given to `HTTPNode`, or by the node program that
`BinNode` starts. It has no command line of its own, no transport sockets, no
message registry and no storage; those are supplied by the caller. The
gateway has no blockchain view.

## Tests

The test suite uses pytest and responses, available through the `test`
extra.