"""First-party relay of the vendor bootstrap script and XHR telemetry."""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Mapping
from urllib.parse import urlencode

import httpx

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.settings import settings
from pxguard.core.context import RequestContext
from pxguard.core.errors import RelayUpstreamError
from pxguard.core.models import ResponseDescriptor
from pxguard.core.risk_client import filter_sensitive_headers
from pxguard.util.logger import get_logger

logger = get_logger("first_party")

_HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}
# 上游响应已被 httpx 解码，长度/编码头不能原样转发
_RESPONSE_DROP_HEADERS = {"content-length", "content-encoding", *_HOP_BY_HOP_HEADERS}
_REQUEST_DROP_HEADERS = {"host", "content-length", "cookie", *_HOP_BY_HOP_HEADERS}

DEFAULT_SCRIPT_CONTENT_TYPE = "application/javascript"
DEFAULT_XHR_CONTENT_TYPE = "application/json"


class RelayKind(str, Enum):
    SCRIPT = "init.js"
    XHR = "xhr"


def match_first_party(path: str, config: EnforcementConfig) -> tuple[RelayKind, str] | None:
    """Return (kind, upstream sub-path) for relay paths, otherwise None."""
    prefix = config.first_party_prefix
    if path == f"{prefix}/init.js":
        return RelayKind.SCRIPT, ""
    xhr_prefix = f"{prefix}/xhr/"
    if path.startswith(xhr_prefix):
        return RelayKind.XHR, path[len(xhr_prefix) - 1:]
    return None


def encode_relay_body(body: bytes | str | dict | None) -> bytes:
    """Structured (already parsed) bodies go back out form-encoded."""
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, dict):
        return urlencode(
            {key: value if isinstance(value, str) else json.dumps(value) for key, value in body.items()}
        ).encode("utf-8")
    return str(body).encode("utf-8")


def _relayed_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {key: value for key, value in headers.items() if key.lower() not in _RESPONSE_DROP_HEADERS}


class FirstPartyRelay:
    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock: asyncio.Lock | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        if self._client_lock is None:
            self._client_lock = asyncio.Lock()
        async with self._client_lock:
            if self._client is None:
                timeout = float(settings.first_party_timeout_seconds)
                self._client = httpx.AsyncClient(
                    follow_redirects=False,
                    http2=False,
                    transport=self._transport,
                    timeout=httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout),
                )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def default_response(kind: RelayKind, status_code: int = 200) -> ResponseDescriptor:
        if kind is RelayKind.SCRIPT:
            return ResponseDescriptor(status_code=status_code, headers={"content-type": DEFAULT_SCRIPT_CONTENT_TYPE}, body="")
        return ResponseDescriptor(status_code=status_code, headers={"content-type": DEFAULT_XHR_CONTENT_TYPE}, body="{}")

    def build_upstream_headers(self, ctx: RequestContext, config: EnforcementConfig) -> dict[str, str]:
        allowed = filter_sensitive_headers(ctx.headers, config.sensitive_headers)
        forwarded = {key: value for key, value in allowed.items() if key not in _REQUEST_DROP_HEADERS}
        forwarded["x-px-first-party"] = "1"
        forwarded["x-px-enforcer-true-ip"] = ctx.ip
        vid = ctx.cookies.get(settings.first_party_vid_cookie, "")
        if vid:
            forwarded["cookie"] = f"pxvid={vid}"
        return forwarded

    async def _send(self, method: str, url: str, headers: dict[str, str], content: bytes | None) -> ResponseDescriptor:
        client = await self._get_client()
        try:
            response = await client.request(method=method, url=url, headers=headers, content=content)
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
            raise RelayUpstreamError(f"first_party_unreachable: {detail}") from exc
        if response.status_code >= 500:
            raise RelayUpstreamError(f"first_party_http_error:{response.status_code}", status_code=response.status_code)
        return ResponseDescriptor(
            status_code=response.status_code,
            headers=_relayed_headers(response.headers),
            body=response.text,
        )

    async def relay(self, kind: RelayKind, sub_path: str, ctx: RequestContext, config: EnforcementConfig) -> ResponseDescriptor:
        if not config.first_party_enabled:
            logger.debug("first party disabled, serving default %s", kind.value)
            return self.default_response(kind)

        headers = self.build_upstream_headers(ctx, config)
        if kind is RelayKind.SCRIPT:
            url = f"{config.backend_client_url}/{config.app_id}/main.min.js"
            method, content = "GET", None
        else:
            url = f"{config.backend_collector_url}{sub_path}"
            if ctx.query:
                url = f"{url}?{ctx.query}"
            method = ctx.method
            content = encode_relay_body(ctx.body) if method not in {"GET", "HEAD"} else None
            if isinstance(ctx.body, dict):
                headers["content-type"] = "application/x-www-form-urlencoded"

        logger.debug("first party relay kind=%s method=%s url=%s", kind.value, method, url)
        try:
            return await self._send(method, url, headers, content)
        except RelayUpstreamError as exc:
            logger.error("first party relay failed kind=%s url=%s error=%s", kind.value, url, exc)
            if kind is RelayKind.SCRIPT:
                return self.default_response(kind)
            return self.default_response(kind, status_code=exc.status_code or 502)
