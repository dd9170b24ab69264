"""Remote risk API client."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.settings import settings
from pxguard.core.context import RequestContext
from pxguard.core.enums import CallReason, VerdictSource
from pxguard.core.errors import RemoteCallError
from pxguard.core.models import RiskVerdict
from pxguard.util.logger import get_logger

MODULE_VERSION = "pxguard/1.0.0"
RISK_API_PATH = "/api/v3/risk"

logger = get_logger("risk_client")


def filter_sensitive_headers(headers: dict[str, str] | Any, sensitive: tuple[str, ...]) -> dict[str, str]:
    blocked = {name.lower() for name in sensitive}
    return {key: value for key, value in headers.items() if key.lower() not in blocked}


def build_risk_payload(ctx: RequestContext, config: EnforcementConfig, call_reason: CallReason, vid: str = "") -> dict[str, Any]:
    headers = filter_sensitive_headers(ctx.headers, config.sensitive_headers)
    payload: dict[str, Any] = {
        "request": {
            "ip": ctx.ip,
            "headers": [{"name": key, "value": value} for key, value in headers.items()],
            "url": ctx.full_url,
            "uri": ctx.uri,
            "firstParty": config.first_party_enabled,
        },
        "additional": {
            "s2s_call_reason": call_reason.value,
            "http_method": ctx.method,
            "http_version": "1.1",
            "module_version": MODULE_VERSION,
            "risk_mode": "active_blocking" if config.is_active_blocking else "monitor",
            "cookie_origin": "header" if ctx.is_mobile else "cookie",
        },
    }
    if vid:
        payload["vid"] = vid
    return payload


class RemoteRiskClient:
    """Single-attempt risk API caller. Every failure surfaces as RemoteCallError."""

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
                self._client = httpx.AsyncClient(
                    http2=False,
                    transport=self._transport,
                    limits=httpx.Limits(
                        max_connections=max(10, int(settings.upstream_max_connections)),
                        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
                    ),
                )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def evaluate(
        self,
        ctx: RequestContext,
        config: EnforcementConfig,
        *,
        call_reason: CallReason = CallReason.NO_COOKIE,
        vid: str = "",
    ) -> RiskVerdict:
        url = f"{config.backend_url}{RISK_API_PATH}"
        payload = build_risk_payload(ctx, config, call_reason, vid)
        headers = {
            "Authorization": f"Bearer {config.auth_token}",
            "Content-Type": "application/json",
        }
        timeout_s = max(0.001, config.api_timeout_ms / 1000.0)
        start = time.perf_counter()
        client = await self._get_client()
        try:
            response = await client.post(url, json=payload, headers=headers, timeout=timeout_s)
        except httpx.TimeoutException as exc:
            raise RemoteCallError(f"risk_api_timeout timeout_ms={config.api_timeout_ms}") from exc
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or "connection_failed"
            raise RemoteCallError(f"risk_api_unreachable: {detail}") from exc
        round_trip_ms = (time.perf_counter() - start) * 1000.0

        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteCallError(f"risk_api_http_error:{response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteCallError("risk_api_invalid_json") from exc
        if not isinstance(body, dict):
            raise RemoteCallError("risk_api_invalid_payload")
        if body.get("status", 0) != 0:
            raise RemoteCallError(f"risk_api_status:{body.get('status')} message={body.get('message', '')}")

        try:
            score = int(body.get("score", 0))
        except (TypeError, ValueError) as exc:
            raise RemoteCallError("risk_api_invalid_score") from exc

        verdict = RiskVerdict.from_score(
            score=score,
            action_code=str(body.get("action") or ""),
            blocking_score=config.blocking_score,
            source=VerdictSource.REMOTE,
            uuid=str(body.get("uuid") or ""),
            vid=vid,
            call_reason=call_reason,
            round_trip_ms=round(round_trip_ms, 3),
        )
        logger.debug(
            "risk api verdict score=%s action=%s uuid=%s rtt_ms=%.1f",
            verdict.score,
            verdict.action.value,
            verdict.uuid,
            round_trip_ms,
        )
        return verdict
