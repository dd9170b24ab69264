"""Immutable per-middleware enforcer configuration."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pxguard.config.settings import settings
from pxguard.core.enums import ModuleMode
from pxguard.core.errors import ConfigError
from pxguard.util.matching import build_entries, build_networks
from pxguard.util.logger import normalize_level


_DEFAULT_SENSITIVE_HEADERS = ("cookie", "cookies")


class EnforcementConfig(BaseModel):
    """Resolved once per middleware instance and never mutated afterwards.

    Accepts the vendor ``px_*`` parameter names as aliases so existing
    integrations can pass their parameter dicts through unchanged.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        arbitrary_types_allowed=True,
    )

    app_id: str = Field(alias="px_app_id", min_length=1)
    cookie_secret: str = Field(alias="px_cookie_secret", min_length=1)
    auth_token: str = Field(alias="px_auth_token", min_length=1)

    module_enabled: bool = Field(default=True, alias="px_module_enabled")
    module_mode: ModuleMode = Field(default=ModuleMode.MONITOR, alias="px_module_mode")
    blocking_score: int = Field(default=100, ge=0, le=100, alias="px_blocking_score")
    logger_severity: str = Field(default="error", alias="px_logger_severity")

    ip_headers: tuple[str, ...] = Field(default=(), alias="px_ip_headers")
    bypass_monitor_header: str = Field(default="", alias="px_bypass_monitor_header")
    sensitive_headers: tuple[str, ...] = Field(default=_DEFAULT_SENSITIVE_HEADERS, alias="px_sensitive_headers")

    # Route/attribute entries are LiteralEntry | PatternEntry tuples, see util.matching.
    filter_by_route: tuple[Any, ...] = Field(default=(), alias="px_filter_by_route")
    monitored_routes: tuple[Any, ...] = Field(default=(), alias="px_monitored_routes")
    enforced_routes: tuple[Any, ...] = Field(default=(), alias="px_enforced_routes")
    sensitive_routes: tuple[Any, ...] = Field(default=(), alias="px_sensitive_routes")
    filter_by_user_agent: tuple[Any, ...] = Field(default=(), alias="px_filter_by_user_agent")
    filter_by_http_method: tuple[Any, ...] = Field(default=(), alias="px_filter_by_http_method")
    filter_by_ip: tuple[Any, ...] = Field(default=(), alias="px_filter_by_ip")

    advanced_blocking_response_enabled: bool = Field(default=True, alias="px_advanced_blocking_response_enabled")
    first_party_enabled: bool = Field(default=True, alias="px_first_party_enabled")
    send_page_activities: bool = Field(default=True, alias="px_send_page_activities")
    max_activity_batch_size: int = Field(default=20, ge=1, alias="px_max_activity_batch_size")

    api_timeout_ms: int = Field(default=1000, ge=1, alias="px_api_timeout_ms")
    cookie_ttl_grace_seconds: int = Field(default=0, ge=0, alias="px_cookie_ttl_grace_seconds")

    custom_logo: str = Field(default="", alias="px_custom_logo")
    js_ref: str = Field(default="", alias="px_js_ref")
    css_ref: str = Field(default="", alias="px_css_ref")

    backend_url: str = Field(default="", alias="px_backend_url")
    backend_collector_url: str = Field(default="", alias="px_backend_collector_url")
    backend_client_url: str = Field(default="", alias="px_backend_client_url")

    additional_activity_handler: Callable[..., Any] | None = Field(default=None, alias="px_additional_activity_handler")

    @model_validator(mode="before")
    @classmethod
    def _fill_backend_urls(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        values = dict(data)
        app_id = str(values.get("px_app_id") or values.get("app_id") or "").strip()
        lowered = app_id.lower()
        if not (values.get("px_backend_url") or values.get("backend_url")):
            values["px_backend_url"] = settings.backend_url_template.format(app_id=lowered)
        if not (values.get("px_backend_collector_url") or values.get("backend_collector_url")):
            values["px_backend_collector_url"] = settings.backend_collector_url_template.format(app_id=lowered)
        if not (values.get("px_backend_client_url") or values.get("backend_client_url")):
            values["px_backend_client_url"] = settings.backend_client_url
        return values

    @field_validator("module_mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> ModuleMode:
        if isinstance(value, ModuleMode):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            if name in ModuleMode.__members__:
                return ModuleMode[name]
            if name.isdigit():
                value = int(name)
        try:
            return ModuleMode(int(value))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"unknown module mode: {value!r}") from exc

    @field_validator("ip_headers", "sensitive_headers", mode="before")
    @classmethod
    def _lower_header_names(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        return tuple(str(item).strip().lower() for item in value if str(item).strip())

    @field_validator("bypass_monitor_header", mode="before")
    @classmethod
    def _lower_bypass_header(cls, value: Any) -> str:
        return str(value or "").strip().lower()

    @field_validator(
        "filter_by_route",
        "monitored_routes",
        "enforced_routes",
        "sensitive_routes",
        "filter_by_user_agent",
        "filter_by_http_method",
        mode="before",
    )
    @classmethod
    def _parse_entries(cls, value: Any) -> tuple[Any, ...]:
        return build_entries(value)

    @field_validator("filter_by_ip", mode="before")
    @classmethod
    def _parse_networks(cls, value: Any) -> tuple[Any, ...]:
        return build_networks(value)

    @field_validator("backend_url", "backend_collector_url", "backend_client_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_params(cls, params: Mapping[str, Any] | "EnforcementConfig") -> "EnforcementConfig":
        if isinstance(params, EnforcementConfig):
            return params
        if not isinstance(params, Mapping):
            raise ConfigError(f"enforcer params must be a mapping, got {type(params).__name__}")
        try:
            return cls.model_validate(dict(params))
        except ValidationError as exc:
            raise ConfigError(f"invalid enforcer configuration: {exc}") from exc

    @property
    def first_party_prefix(self) -> str:
        """App id without its two-character vendor prefix: ``PX_APP_ID`` -> ``/_APP_ID``, ``PXabc123`` -> ``/abc123``."""
        return f"/{self.app_id[2:]}"

    @property
    def logger_level(self) -> int:
        return normalize_level(self.logger_severity) if self.logger_severity else logging.ERROR

    @property
    def is_active_blocking(self) -> bool:
        return self.module_mode is ModuleMode.ACTIVE_BLOCKING
