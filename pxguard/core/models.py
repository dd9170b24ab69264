"""Enforcement value models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pxguard.core.enums import Action, CallReason, PassReason, RoutePolicy, VerdictSource


class RiskVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(default=0, ge=0, le=100)
    action: Action = Action.NONE
    source: VerdictSource = VerdictSource.REMOTE
    uuid: str = ""
    vid: str = ""
    call_reason: CallReason = CallReason.NONE
    round_trip_ms: float = 0.0
    error: str = ""

    @classmethod
    def from_score(
        cls,
        *,
        score: int,
        action_code: str | None,
        blocking_score: int,
        source: VerdictSource,
        **extra: Any,
    ) -> "RiskVerdict":
        """Below the blocking score the verdict never carries an action."""
        bounded = max(0, min(100, int(score)))
        action = Action.from_code(action_code) if bounded >= blocking_score else Action.NONE
        return cls(score=bounded, action=action, source=source, **extra)

    @classmethod
    def fail_open(cls, call_reason: CallReason, error: str, round_trip_ms: float = 0.0) -> "RiskVerdict":
        return cls(
            score=0,
            action=Action.NONE,
            source=VerdictSource.REMOTE,
            call_reason=call_reason,
            round_trip_ms=round_trip_ms,
            error=error,
        )


class ResponseDescriptor(BaseModel):
    status_code: int = 200
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = ""


class EnforcementOutcome(BaseModel):
    passed: bool = True
    action: Action = Action.NONE
    response: ResponseDescriptor | None = None
    reason: PassReason | None = None
    verdict: RiskVerdict | None = None
    route_policy: RoutePolicy | None = None

    @classmethod
    def pass_through(cls, reason: PassReason, **extra: Any) -> "EnforcementOutcome":
        return cls(passed=True, action=Action.NONE, response=None, reason=reason, **extra)


class ActivityEvent(BaseModel):
    type: str
    timestamp: int
    socket_ip: str
    url: str
    px_app_id: str
    vid: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)
