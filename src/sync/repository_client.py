"""
Authoritative Repository Client: 直接从记录所在 PDS 读取当前内容与 CID。

  get_record(uri, pds_endpoint=None) → AuthoritativeRecord | None

- None 表示记录不存在（404，或 XRPC 400 RecordNotFound）。
- 网络错误 / 5xx / 429 / DID 无法解析 → TransientFetchError（可重试，但这里只试一次）。
- 未给出 pds_endpoint 时通过 DID 文档解析（did:plc 走 PLC directory，did:web 走 .well-known）。
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional, Protocol

import requests

from src.core.errors import TransientFetchError
from src.log import get_logger
from src.sync.models import AuthoritativeRecord
from src.sync.records import parse_at_uri

logger = get_logger(__name__)

GET_RECORD_NSID = "com.atproto.repo.getRecord"
_NOT_FOUND_ERRORS = {"RecordNotFound", "RepoNotFound", "NotFound"}


class RepositoryClient(Protocol):
    def get_record(self, uri: str, pds_endpoint: Optional[str] = None) -> Optional[AuthoritativeRecord]:
        ...


class XrpcRepositoryClient:
    """requests.Session 复用连接；DID → PDS 解析结果进程内缓存。"""

    def __init__(
        self,
        plc_directory_url: str = "https://plc.directory",
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        self.plc_directory_url = plc_directory_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._endpoint_cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    # ── DID resolution ──

    def _did_document_url(self, did: str) -> str:
        if did.startswith("did:plc:"):
            return f"{self.plc_directory_url}/{did}"
        if did.startswith("did:web:"):
            host = did[len("did:web:"):]
            return f"https://{host}/.well-known/did.json"
        raise TransientFetchError(f"unsupported DID method: {did}")

    def resolve_pds_endpoint(self, did: str) -> str:
        with self._lock:
            cached = self._endpoint_cache.get(did)
        if cached:
            return cached
        url = self._did_document_url(did)
        try:
            resp = self._session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            doc = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise TransientFetchError(f"DID resolution failed for {did}: {e}", cause=e) from e

        endpoint = _pds_from_did_document(doc)
        if not endpoint:
            raise TransientFetchError(f"DID document for {did} has no PDS service")
        with self._lock:
            self._endpoint_cache[did] = endpoint
        return endpoint

    # ── records ──

    def get_record(self, uri: str, pds_endpoint: Optional[str] = None) -> Optional[AuthoritativeRecord]:
        at = parse_at_uri(uri)
        endpoint = (pds_endpoint or self.resolve_pds_endpoint(at.authority)).rstrip("/")
        url = f"{endpoint}/xrpc/{GET_RECORD_NSID}"
        params = {"repo": at.authority, "collection": at.collection, "rkey": at.rkey}
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientFetchError(f"fetch {uri} from {endpoint} failed: {e}", cause=e) from e

        if _is_not_found(resp):
            logger.debug("record not found: %s", uri)
            return None
        if resp.status_code >= 400:
            raise TransientFetchError(f"fetch {uri} from {endpoint}: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise TransientFetchError(f"invalid JSON from {endpoint} for {uri}", cause=e) from e

        cid = data.get("cid")
        if not cid:
            raise TransientFetchError(f"{endpoint} returned {uri} without a CID")
        return AuthoritativeRecord(uri=uri, cid=cid, value=data.get("value") or {}, pds_endpoint=endpoint)


def _pds_from_did_document(doc: Dict[str, Any]) -> Optional[str]:
    for svc in doc.get("service") or []:
        if not isinstance(svc, dict):
            continue
        if svc.get("id", "").endswith("#atproto_pds") or svc.get("type") == "AtprotoPersonalDataServer":
            endpoint = svc.get("serviceEndpoint")
            if isinstance(endpoint, str) and endpoint:
                return endpoint.rstrip("/")
    return None


def _is_not_found(resp: requests.Response) -> bool:
    if resp.status_code == 404:
        return True
    if resp.status_code == 400:
        try:
            body = resp.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get("error") in _NOT_FOUND_ERRORS
    return False
