"""Per-request enforcement decision pipeline."""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from starlette.requests import Request

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.core.activities import ActivityBuffer
from pxguard.core.context import RequestContext, context_from_request
from pxguard.core.cookie import CookieVerdictReader
from pxguard.core.enums import Action, CallReason, PassReason
from pxguard.core.errors import RemoteCallError
from pxguard.core.first_party import FirstPartyRelay, match_first_party
from pxguard.core.models import ActivityEvent, EnforcementOutcome, ResponseDescriptor, RiskVerdict
from pxguard.core.policy import effective_action, resolve_route_policy
from pxguard.core.responses import build_block_response
from pxguard.core.risk_client import RemoteRiskClient, filter_sensitive_headers
from pxguard.util.logger import get_logger
from pxguard.util.matching import PatternEntry, find_match, match_ip

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class Enforcer:
    def __init__(
        self,
        params: Mapping[str, Any] | EnforcementConfig,
        risk_client: RemoteRiskClient | None = None,
        *,
        activities: ActivityBuffer | None = None,
        relay: FirstPartyRelay | None = None,
    ) -> None:
        self.config = EnforcementConfig.from_params(params)
        self.logger = get_logger("enforcer", self.config.logger_level)
        self.risk_client = risk_client or RemoteRiskClient()
        self.activities = activities or ActivityBuffer(self.config)
        self.relay = relay or FirstPartyRelay()
        self.cookie_reader = CookieVerdictReader(self.config)
        self.logger.info(
            "enforcer ready app_id=%s mode=%s blocking_score=%s first_party=%s",
            self.config.app_id,
            self.config.module_mode.name,
            self.config.blocking_score,
            self.config.first_party_enabled,
        )

    async def aclose(self) -> None:
        await asyncio.to_thread(self.activities.shutdown)
        await self.risk_client.aclose()
        await self.relay.aclose()

    def _hard_filter(self, ctx: RequestContext) -> PassReason | None:
        config = self.config
        if not config.module_enabled:
            self.logger.debug("Request will not be verified, module is disabled")
            return PassReason.MODULE_DISABLED

        route = find_match(config.filter_by_route, ctx.path)
        if route is not None:
            if isinstance(route, PatternEntry):
                self.logger.debug("Found whitelist route by Regex %s", ctx.path)
            else:
                self.logger.debug("Found whitelist route %s", ctx.path)
            return PassReason.WHITELIST_ROUTE

        if find_match(config.filter_by_http_method, ctx.method, ignore_case=True) is not None:
            self.logger.debug("Skipping verification for filtered method %s", ctx.method)
            return PassReason.FILTERED_METHOD

        if ctx.user_agent and find_match(config.filter_by_user_agent, ctx.user_agent, ignore_case=True) is not None:
            self.logger.debug("Skipping verification for filtered user agent %s", ctx.user_agent)
            return PassReason.FILTERED_USER_AGENT

        if match_ip(config.filter_by_ip, ctx.ip) is not None:
            self.logger.debug("Skipping verification for filtered ip address %s", ctx.ip)
            return PassReason.FILTERED_IP
        return None

    async def resolve_verdict(self, ctx: RequestContext) -> RiskVerdict:
        cookie = self.cookie_reader.read(ctx)
        call_reason = cookie.call_reason
        if cookie.verdict is not None:
            if not find_match(self.config.sensitive_routes, ctx.path):
                return cookie.verdict
            self.logger.debug("sensitive route %s, verifying cookie verdict remotely", ctx.path)
            call_reason = CallReason.SENSITIVE_ROUTE

        start = time.perf_counter()
        try:
            return await self.risk_client.evaluate(ctx, self.config, call_reason=call_reason, vid=cookie.vid)
        except RemoteCallError as exc:
            round_trip_ms = (time.perf_counter() - start) * 1000.0
            self.logger.error("risk api failed, passing request path=%s reason=%s error=%s", ctx.path, call_reason.value, exc)
            return RiskVerdict.fail_open(call_reason, str(exc), round_trip_ms=round(round_trip_ms, 3)).model_copy(
                update={"vid": cookie.vid}
            )

    def _build_activity(self, ctx: RequestContext, verdict: RiskVerdict, action: Action) -> ActivityEvent:
        blocked_by_verdict = verdict.action is not Action.NONE
        return ActivityEvent(
            type="block" if blocked_by_verdict else "page_requested",
            timestamp=int(time.time() * 1000),
            socket_ip=ctx.ip,
            url=ctx.full_url,
            px_app_id=self.config.app_id,
            vid=verdict.vid,
            headers=filter_sensitive_headers(ctx.headers, self.config.sensitive_headers),
            details={
                "score": verdict.score,
                "uuid": verdict.uuid,
                "module_mode": self.config.module_mode.name.lower(),
                "source": verdict.source.value,
                "call_reason": verdict.call_reason.value,
                "risk_rtt": verdict.round_trip_ms,
                "block_action": verdict.action.page_name if blocked_by_verdict else "",
                "simulated_block": blocked_by_verdict and action is Action.NONE,
                "http_method": ctx.method,
            },
        )

    def _record_activity(self, ctx: RequestContext, verdict: RiskVerdict, action: Action) -> None:
        if verdict.action is Action.NONE and not self.config.send_page_activities:
            return
        try:
            self.activities.enqueue(self._build_activity(ctx, verdict, action))
        except Exception as exc:  # pragma: no cover
            self.logger.error("activity enqueue failed path=%s error=%s", ctx.path, exc)

    def _run_activity_handler(self, ctx: RequestContext, verdict: RiskVerdict) -> None:
        handler = self.config.additional_activity_handler
        if handler is None:
            return
        try:
            handler(ctx, verdict, self.config)
        except Exception as exc:
            self.logger.error("additional activity handler failed error=%s", exc)

    async def run(self, ctx: RequestContext, request: Request | None = None) -> EnforcementOutcome:
        reason = self._hard_filter(ctx)
        if reason is not None:
            return EnforcementOutcome.pass_through(reason)

        relay_match = None if ctx.is_mobile else match_first_party(ctx.path, self.config)
        if relay_match is not None:
            kind, sub_path = relay_match
            if ctx.body is None and request is not None and ctx.method in _BODY_METHODS:
                ctx = ctx.with_body(await request.body())
            response = await self.relay.relay(kind, sub_path, ctx, self.config)
            return EnforcementOutcome(passed=False, response=response, reason=PassReason.FIRST_PARTY)

        verdict = await self.resolve_verdict(ctx)
        self._run_activity_handler(ctx, verdict)
        policy = resolve_route_policy(self.config, ctx.path)
        action = effective_action(policy, self.config, ctx, verdict)
        self._record_activity(ctx, verdict, action)

        if action is Action.NONE:
            pass_reason = PassReason.VERDICT_PASSED if verdict.action is Action.NONE else PassReason.MONITORED
            self.logger.debug(
                "request passed path=%s score=%s policy=%s reason=%s",
                ctx.path,
                verdict.score,
                policy.value,
                pass_reason.value,
            )
            return EnforcementOutcome.pass_through(pass_reason, verdict=verdict, route_policy=policy)

        self.logger.debug("request %s path=%s score=%s uuid=%s", action.page_name, ctx.path, verdict.score, verdict.uuid)
        return EnforcementOutcome(
            passed=False,
            action=action,
            response=build_block_response(action, self.config, ctx, verdict),
            verdict=verdict,
            route_policy=policy,
        )

    async def enforce(self, request: Request, body: Any = None) -> EnforcementOutcome:
        """Run the pipeline for a host request; failures degrade to pass-through."""
        try:
            ctx = context_from_request(request, self.config, body=body)
            return await self.run(ctx, request=request)
        except Exception as exc:
            self.logger.error("enforcer error, passing request path=%s error=%s", request.url.path, exc)
            return EnforcementOutcome.pass_through(PassReason.ENFORCER_ERROR)

    async def enforce_callback(
        self,
        request: Request,
        callback: Callable[..., Awaitable[None] | None],
        body: Any = None,
    ) -> None:
        outcome = await self.enforce(request, body=body)
        await complete(callback, outcome)


def _positional_arity(callback: Callable[..., Any]) -> int:
    try:
        signature = inspect.signature(callback)
    except (TypeError, ValueError):
        return 1
    count = 0
    for param in signature.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return 2
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            count += 1
    return count


async def complete(callback: Callable[..., Any], outcome: EnforcementOutcome) -> None:
    """Invoke ``callback`` once: ``(response)`` or ``(error, response)`` by its arity."""
    response: ResponseDescriptor | None = outcome.response
    if _positional_arity(callback) >= 2:
        result = callback(None, response)
    else:
        result = callback(response)
    if inspect.isawaitable(result):
        await result


