"""Risk cookie codec and verdict reader.

Cookie layout (``_px3`` or the token after ``3:`` in the mobile header)::

    <hmac-sha256 hex>:<urlsafe base64 JSON payload>

Payload keys: ``ver`` (format version), ``t`` (expiry, epoch ms), ``s``
(score), ``a`` (action code), ``u`` (uuid), ``v`` (vid). Web cookies are
signed over ``payload + user-agent`` so a cookie cannot be replayed from a
different client; mobile tokens are signed over the payload only.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import time
from dataclasses import dataclass
from hashlib import sha256
from typing import Any

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.settings import settings
from pxguard.core.context import RequestContext
from pxguard.core.enums import CallReason, VerdictSource
from pxguard.core.errors import CookieDecodeError
from pxguard.core.models import RiskVerdict
from pxguard.util.logger import get_logger

COOKIE_VERSION = 3
MOBILE_NO_COOKIE = "1"
MOBILE_CONNECTION_ERROR = "2"

logger = get_logger("cookie")


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_signature(secret: str, payload: str, user_agent: str = "") -> str:
    message = (payload + user_agent).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, sha256).hexdigest()


def encode_cookie(
    secret: str,
    *,
    score: int,
    action: str = "",
    uuid: str = "",
    vid: str = "",
    expires_ms: int | None = None,
    user_agent: str = "",
    version: int = COOKIE_VERSION,
) -> str:
    payload = {
        "ver": version,
        "t": expires_ms if expires_ms is not None else now_ms() + 60_000,
        "s": score,
        "a": action,
        "u": uuid,
        "v": vid,
    }
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    encoded = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return f"{compute_signature(secret, encoded, user_agent)}:{encoded}"


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def decode_cookie(secret: str, raw: str, user_agent: str = "") -> dict[str, Any]:
    """Authenticate and decode a cookie value, raising CookieDecodeError."""

    signature, sep, encoded = raw.strip().partition(":")
    if not sep or not signature or not encoded:
        raise CookieDecodeError("malformed cookie", CallReason.COOKIE_DECRYPTION_FAILED.value)
    try:
        payload = json.loads(_b64decode(encoded).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise CookieDecodeError(f"undecodable cookie payload: {exc}", CallReason.COOKIE_DECRYPTION_FAILED.value) from exc
    if not isinstance(payload, dict):
        raise CookieDecodeError("cookie payload is not an object", CallReason.COOKIE_DECRYPTION_FAILED.value)
    if payload.get("ver") != COOKIE_VERSION:
        raise CookieDecodeError(f"unsupported cookie version {payload.get('ver')!r}", CallReason.COOKIE_DECRYPTION_FAILED.value)

    expected = compute_signature(secret, encoded, user_agent)
    if not hmac.compare_digest(expected, signature.lower()):
        raise CookieDecodeError("cookie signature mismatch", CallReason.COOKIE_VALIDATION_FAILED.value)

    for key in ("t", "s"):
        if not isinstance(payload.get(key), int) or isinstance(payload.get(key), bool):
            raise CookieDecodeError(f"cookie field {key} missing or invalid", CallReason.COOKIE_VALIDATION_FAILED.value)
    return payload


@dataclass(slots=True)
class CookieResult:
    verdict: RiskVerdict | None
    call_reason: CallReason
    vid: str = ""


class CookieVerdictReader:
    """Turns the client's risk cookie into a verdict or reports why it cannot."""

    def __init__(self, config: EnforcementConfig) -> None:
        self.config = config

    def _raw_cookie(self, ctx: RequestContext) -> tuple[str, str, CallReason | None]:
        """Return (cookie, signing user-agent, early call reason)."""
        if ctx.is_mobile:
            header = ctx.mobile_header.strip()
            if header == MOBILE_CONNECTION_ERROR:
                return "", "", CallReason.MOBILE_SDK_CONNECTION_ERROR
            if not header or header == MOBILE_NO_COOKIE:
                return "", "", CallReason.NO_COOKIE
            version, sep, token = header.partition(":")
            if not sep or version != str(COOKIE_VERSION):
                return "", "", CallReason.COOKIE_DECRYPTION_FAILED
            return token, "", None
        raw = ctx.cookies.get(settings.risk_cookie_name, "")
        if not raw:
            return "", "", CallReason.NO_COOKIE
        return raw, ctx.user_agent, None

    def read(self, ctx: RequestContext) -> CookieResult:
        raw, user_agent, early_reason = self._raw_cookie(ctx)
        fallback_vid = ctx.cookies.get(settings.first_party_vid_cookie, "")
        if early_reason is not None:
            logger.debug("risk cookie unavailable reason=%s", early_reason.value)
            return CookieResult(verdict=None, call_reason=early_reason, vid=fallback_vid)

        try:
            payload = decode_cookie(self.config.cookie_secret, raw, user_agent)
        except CookieDecodeError as exc:
            logger.debug("risk cookie rejected reason=%s detail=%s", exc.reason, exc)
            return CookieResult(verdict=None, call_reason=CallReason(exc.reason), vid=fallback_vid)

        vid = str(payload.get("v") or fallback_vid)
        grace_ms = self.config.cookie_ttl_grace_seconds * 1000
        if payload["t"] + grace_ms < now_ms():
            logger.debug("risk cookie expired expiry_ms=%s", payload["t"])
            return CookieResult(verdict=None, call_reason=CallReason.COOKIE_EXPIRED, vid=vid)

        verdict = RiskVerdict.from_score(
            score=payload["s"],
            action_code=str(payload.get("a") or ""),
            blocking_score=self.config.blocking_score,
            source=VerdictSource.COOKIE,
            uuid=str(payload.get("u") or ""),
            vid=vid,
        )
        logger.debug("risk cookie verified score=%s action=%s", verdict.score, verdict.action.value)
        return CookieResult(verdict=verdict, call_reason=CallReason.NONE, vid=vid)
