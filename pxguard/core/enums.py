"""Enumerations shared across the enforcement pipeline."""

from __future__ import annotations

from enum import Enum, IntEnum


class ModuleMode(IntEnum):
    MONITOR = 0
    ACTIVE_BLOCKING = 1


class Action(str, Enum):
    NONE = "none"
    CHALLENGE = "challenge"
    BLOCK = "block"

    @classmethod
    def from_code(cls, code: str | None) -> "Action":
        """Map the risk API / cookie action code to an action.

        ``c`` is a captcha challenge, every other non-empty code blocks.
        """
        normalized = str(code or "").strip().lower()
        if not normalized:
            return cls.NONE
        if normalized == "c":
            return cls.CHALLENGE
        return cls.BLOCK

    @property
    def page_name(self) -> str:
        return "captcha" if self is Action.CHALLENGE else "block"


class VerdictSource(str, Enum):
    COOKIE = "cookie"
    REMOTE = "s2s"


class RoutePolicy(str, Enum):
    ENFORCE = "enforce"
    MONITOR_ONLY = "monitor_only"


class PassReason(str, Enum):
    MODULE_DISABLED = "module_disabled"
    WHITELIST_ROUTE = "whitelist_route"
    FILTERED_METHOD = "filtered_method"
    FILTERED_USER_AGENT = "filtered_user_agent"
    FILTERED_IP = "filtered_ip"
    FIRST_PARTY = "first_party"
    VERDICT_PASSED = "verdict_passed"
    MONITORED = "monitored"
    ENFORCER_ERROR = "enforcer_error"


class CallReason(str, Enum):
    NONE = "none"
    NO_COOKIE = "no_cookie"
    COOKIE_EXPIRED = "cookie_expired"
    COOKIE_DECRYPTION_FAILED = "cookie_decryption_failed"
    COOKIE_VALIDATION_FAILED = "cookie_validation_failed"
    SENSITIVE_ROUTE = "sensitive_route"
    MOBILE_SDK_CONNECTION_ERROR = "mobile_sdk_connection_error"
