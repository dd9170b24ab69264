"""Per-request enforcement context."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from starlette.requests import Request

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.settings import settings


@dataclass(frozen=True, slots=True)
class RequestContext:
    method: str
    path: str
    ip: str
    protocol: str = "http"
    hostname: str = ""
    query: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)
    body: bytes | str | dict | None = None

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def user_agent(self) -> str:
        return self.header("user-agent")

    @property
    def content_type(self) -> str:
        return self.header("content-type")

    @property
    def full_url(self) -> str:
        url = f"{self.protocol}://{self.hostname}{self.path}"
        return f"{url}?{self.query}" if self.query else url

    @property
    def uri(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def mobile_header(self) -> str:
        return self.header(settings.mobile_auth_header)

    @property
    def is_mobile(self) -> bool:
        return settings.mobile_auth_header in self.headers

    def with_body(self, body: bytes | str | dict | None) -> "RequestContext":
        return replace(self, body=body)


def resolve_client_ip(headers: Mapping[str, str], ip_headers: tuple[str, ...], fallback: str) -> str:
    for name in ip_headers:
        raw = headers.get(name, "").strip()
        if raw:
            # x-forwarded-for 形式取第一个地址
            return raw.split(",", 1)[0].strip()
    return fallback


def build_context(
    *,
    method: str,
    path: str,
    config: EnforcementConfig,
    headers: Mapping[str, str] | None = None,
    cookies: Mapping[str, str] | None = None,
    socket_ip: str = "",
    protocol: str = "http",
    hostname: str = "",
    query: str = "",
    body: bytes | str | dict | None = None,
) -> RequestContext:
    lowered = {str(key).lower(): str(value) for key, value in (headers or {}).items()}
    return RequestContext(
        method=(method or "GET").upper(),
        path=path or "/",
        ip=resolve_client_ip(lowered, config.ip_headers, socket_ip),
        protocol=protocol or "http",
        hostname=hostname or lowered.get("host", ""),
        query=query,
        headers=lowered,
        cookies=dict(cookies or {}),
        body=body,
    )


def context_from_request(request: Request, config: EnforcementConfig, body: Any = None) -> RequestContext:
    return build_context(
        method=request.method,
        path=request.url.path,
        config=config,
        headers=request.headers,
        cookies=request.cookies,
        socket_ip=request.client.host if request.client else "",
        protocol=request.url.scheme,
        hostname=request.url.hostname or "",
        query=request.url.query,
        body=body,
    )
