"""
XrpcRepositoryClient：getRecord 响应映射与 DID → PDS 解析（requests.Session 用 MagicMock 替身）。
"""

from unittest.mock import MagicMock

import pytest
import requests

from conftest import eprint_uri
from src.core.errors import TransientFetchError
from src.sync.repository_client import XrpcRepositoryClient

PDS = "https://pds.example.com"


def _resp(status: int, body=None):
    resp = MagicMock()
    resp.status_code = status
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


def _client(*responses):
    session = MagicMock()
    session.get.side_effect = list(responses)
    return XrpcRepositoryClient(plc_directory_url="https://plc.test/", timeout=3, session=session), session


def test_get_record_ok():
    uri = eprint_uri("r1")
    client, session = _client(_resp(200, {"uri": uri, "cid": "bafy-1", "value": {"title": "T"}}))
    rec = client.get_record(uri, PDS + "/")
    assert rec.cid == "bafy-1"
    assert rec.value == {"title": "T"}
    assert rec.pds_endpoint == PDS
    session.get.assert_called_once_with(
        f"{PDS}/xrpc/com.atproto.repo.getRecord",
        params={"repo": "did:plc:author1", "collection": "pub.chive.eprint.submission", "rkey": "r1"},
        timeout=3,
    )


@pytest.mark.parametrize("resp", [
    _resp(404, {"error": "NotFound"}),
    _resp(400, {"error": "RecordNotFound", "message": "Could not locate record"}),
    _resp(400, {"error": "RepoNotFound"}),
])
def test_get_record_not_found(resp):
    client, _ = _client(resp)
    assert client.get_record(eprint_uri("gone"), PDS) is None


@pytest.mark.parametrize("resp", [
    _resp(500, {"error": "InternalServerError"}),
    _resp(429, {"error": "RateLimitExceeded"}),
    _resp(400, {"error": "InvalidRequest"}),
    _resp(200, ValueError("not json")),
    _resp(200, {"uri": "x"}),
])
def test_get_record_transient(resp):
    client, _ = _client(resp)
    with pytest.raises(TransientFetchError):
        client.get_record(eprint_uri("r"), PDS)


def test_network_error_is_transient():
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("refused")
    client = XrpcRepositoryClient(session=session)
    with pytest.raises(TransientFetchError) as exc:
        client.get_record(eprint_uri("r"), PDS)
    assert exc.value.retryable
    assert isinstance(exc.value.cause, requests.ConnectionError)


def test_resolves_pds_from_plc_and_caches():
    doc = {
        "id": "did:plc:author1",
        "service": [
            {"id": "#atproto_labeler", "type": "AtprotoLabeler", "serviceEndpoint": "https://labeler.test"},
            {"id": "#atproto_pds", "type": "AtprotoPersonalDataServer", "serviceEndpoint": PDS + "/"},
        ],
    }
    client, session = _client(
        _resp(200, doc),
        _resp(200, {"cid": "bafy-a"}),
        _resp(200, {"cid": "bafy-b"}),
    )
    assert client.get_record(eprint_uri("a")).cid == "bafy-a"
    assert client.get_record(eprint_uri("b")).cid == "bafy-b"

    urls = [c.args[0] for c in session.get.call_args_list]
    assert urls[0] == "https://plc.test/did:plc:author1"
    assert urls[1:] == [f"{PDS}/xrpc/com.atproto.repo.getRecord"] * 2


def test_resolves_did_web():
    client, session = _client(_resp(200, {"service": [{"id": "#atproto_pds", "serviceEndpoint": PDS}]}))
    assert client.resolve_pds_endpoint("did:web:alice.example.org") == PDS
    assert session.get.call_args.args[0] == "https://alice.example.org/.well-known/did.json"


def test_unresolvable_did_is_transient():
    client, _ = _client(_resp(200, {"service": []}))
    with pytest.raises(TransientFetchError):
        client.resolve_pds_endpoint("did:plc:nopds")
    with pytest.raises(TransientFetchError):
        client.resolve_pds_endpoint("did:key:z6Mk")
