import json

import pytest
from werkzeug.test import EnvironBuilder

from peergate.controller.datasharing import DataSharingController
from peergate.datasharing import ExpandingRing, catalog_from_json, parse_duration


class PeerFailure(Exception):
    pass


class FakeNode:
    def __init__(self, error=None):
        self.error = error
        self.uploaded = []
        self.tags = []
        self.names = {}
        self.blobs = {}
        self.catalog = {}
        self.catalog_updates = []
        self.search_all_calls = []
        self.search_first_calls = []
        self.search_results = []
        self.first_result = ""

    def _check(self):
        if self.error is not None:
            raise PeerFailure(self.error)

    def upload(self, stream):
        self._check()
        data = stream.read()
        self.uploaded.append(data)
        return "mh-" + data.decode()

    def download(self, key):
        self._check()
        return self.blobs[key]

    def tag(self, name, metahash):
        self._check()
        self.tags.append((name, metahash))

    def resolve(self, name):
        return self.names.get(name, "")

    def get_catalog(self):
        return self.catalog

    def update_catalog(self, key, peer):
        self.catalog_updates.append((key, peer))

    def search_all(self, pattern, budget, timeout):
        self._check()
        self.search_all_calls.append((pattern, budget, timeout))
        return self.search_results

    def search_first(self, pattern, conf):
        self._check()
        self.search_first_calls.append((pattern, conf))
        return self.first_result


def make_request(method, path="/", data=None, query=None):
    return EnvironBuilder(
        method=method, path=path, data=data, query_string=query
    ).get_request()


def test_upload_returns_metahash_with_cors():
    node = FakeNode()
    ctrl = DataSharingController(node)
    response = ctrl.upload_handler(make_request("POST", data=b"blob"))
    assert response.status_code == 200
    assert response.get_data() == b"mh-blob"
    assert node.uploaded == [b"blob"]
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_upload_error_is_bad_request():
    ctrl = DataSharingController(FakeNode(error="disk full"))
    response = ctrl.upload_handler(make_request("POST", data=b"x"))
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "failed to upload: disk full\n"


def test_upload_wrong_method():
    ctrl = DataSharingController(FakeNode())
    response = ctrl.upload_handler(make_request("GET"))
    assert response.status_code == 405
    assert response.get_data(as_text=True) == "forbidden method\n"


@pytest.mark.parametrize(
    "handler",
    [
        "upload_handler",
        "download_handler",
        "naming_handler",
        "catalog_handler",
        "search_all_handler",
        "search_first_handler",
    ],
)
def test_options_preflight(handler):
    ctrl = DataSharingController(FakeNode())
    response = getattr(ctrl, handler)(make_request("OPTIONS"))
    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Access-Control-Allow-Headers"] == "*"


def test_download_missing_key():
    ctrl = DataSharingController(FakeNode())
    response = ctrl.download_handler(make_request("GET"))
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "'key' argument not found or empty\n"


def test_download_returns_blob():
    node = FakeNode()
    node.blobs["aef123"] = b"\x00\x01data"
    ctrl = DataSharingController(node)
    response = ctrl.download_handler(make_request("GET", query={"key": "aef123"}))
    assert response.status_code == 200
    assert response.get_data() == b"\x00\x01data"


def test_download_error():
    ctrl = DataSharingController(FakeNode(error="no chunk"))
    response = ctrl.download_handler(make_request("GET", query={"key": "k"}))
    assert response.status_code == 400
    assert response.get_data(as_text=True).startswith("failed to download: no chunk")


def test_naming_post_tags():
    node = FakeNode()
    ctrl = DataSharingController(node)
    response = ctrl.naming_handler(make_request("POST", data=json.dumps(["fileB", "mhB"])))
    assert response.status_code == 200
    assert node.tags == [("fileB", "mhB")]


def test_naming_post_short_array_fills_empty():
    node = FakeNode()
    ctrl = DataSharingController(node)
    ctrl.naming_handler(make_request("POST", data=json.dumps(["only"])))
    assert node.tags == [("only", "")]


def test_naming_post_invalid_json():
    node = FakeNode()
    ctrl = DataSharingController(node)
    response = ctrl.naming_handler(make_request("POST", data=b"{not json"))
    assert response.status_code == 500
    assert response.get_data(as_text=True).startswith("failed to unmarshal arguments")
    assert node.tags == []


def test_naming_post_tag_error():
    ctrl = DataSharingController(FakeNode(error="name taken"))
    response = ctrl.naming_handler(make_request("POST", data=json.dumps(["a", "b"])))
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "failed to tag: name taken\n"


def test_naming_get_resolves():
    node = FakeNode()
    node.names["fileB"] = "mhB"
    ctrl = DataSharingController(node)
    response = ctrl.naming_handler(make_request("GET", query={"name": "fileB"}))
    assert response.get_data(as_text=True) == "mhB"


def test_naming_get_missing_name():
    ctrl = DataSharingController(FakeNode())
    response = ctrl.naming_handler(make_request("GET"))
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "'name' argument not found or empty\n"


def test_catalog_get_round_trip():
    node = FakeNode()
    node.catalog = {"aef123": {"127.0.0.1:3", "127.0.0.1:2"}}
    ctrl = DataSharingController(node)
    response = ctrl.catalog_handler(make_request("GET"))
    assert response.headers["Content-Type"] == "application/json"
    assert catalog_from_json(response.get_data()) == node.catalog


def test_catalog_post_updates():
    node = FakeNode()
    ctrl = DataSharingController(node)
    response = ctrl.catalog_handler(
        make_request("POST", data=json.dumps(["aef123", "127.0.0.1:3"]))
    )
    assert response.status_code == 200
    assert node.catalog_updates == [("aef123", "127.0.0.1:3")]


def test_catalog_wrong_method():
    ctrl = DataSharingController(FakeNode())
    assert ctrl.catalog_handler(make_request("DELETE")).status_code == 405


def test_search_all_forwards_arguments():
    node = FakeNode()
    node.search_results = ["fileB", "fileD"]
    ctrl = DataSharingController(node)
    body = json.dumps({"Pattern": "file.*", "Budget": 3, "Timeout": "2s"})
    response = ctrl.search_all_handler(make_request("POST", data=body))
    assert response.status_code == 200
    assert json.loads(response.get_data()) == ["fileB", "fileD"]
    (pattern, budget, timeout), = node.search_all_calls
    assert pattern.pattern == "file.*"
    assert budget == 3
    assert timeout == parse_duration("2s")


def test_search_all_bad_regex():
    ctrl = DataSharingController(FakeNode())
    body = json.dumps({"Pattern": "(", "Budget": 1, "Timeout": "1s"})
    response = ctrl.search_all_handler(make_request("POST", data=body))
    assert response.status_code == 400
    assert response.get_data(as_text=True).startswith("failed to parse regex")


def test_search_all_bad_timeout():
    ctrl = DataSharingController(FakeNode())
    body = json.dumps({"Pattern": ".*", "Budget": 1, "Timeout": "soon"})
    response = ctrl.search_all_handler(make_request("POST", data=body))
    assert response.status_code == 400
    assert response.get_data(as_text=True).startswith("failed to parse wait")


def test_search_all_node_error():
    ctrl = DataSharingController(FakeNode(error="boom"))
    body = json.dumps({"Pattern": ".*", "Budget": 1, "Timeout": "1s"})
    response = ctrl.search_all_handler(make_request("POST", data=body))
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "failed to index: boom\n"


def test_search_first_builds_ring():
    node = FakeNode()
    node.first_result = "fileD"
    ctrl = DataSharingController(node)
    body = json.dumps(
        {"Pattern": "fileD", "Initial": 1, "Factor": 2, "Retry": 5, "Timeout": "3s"}
    )
    response = ctrl.search_first_handler(make_request("POST", data=body))
    assert response.get_data(as_text=True) == "fileD"
    (pattern, ring), = node.search_first_calls
    assert pattern.pattern == "fileD"
    assert ring == ExpandingRing(initial=1, factor=2, retry=5, timeout=parse_duration("3s"))


def test_search_first_invalid_json():
    node = FakeNode()
    ctrl = DataSharingController(node)
    response = ctrl.search_first_handler(make_request("POST", data=b"[1, 2"))
    assert response.status_code == 500
    assert node.search_first_calls == []


def test_search_first_node_error():
    ctrl = DataSharingController(FakeNode(error="nothing"))
    body = json.dumps({"Pattern": ".*", "Initial": 1, "Factor": 2, "Retry": 1, "Timeout": "1s"})
    response = ctrl.search_first_handler(make_request("POST", data=body))
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "failed to search: nothing\n"