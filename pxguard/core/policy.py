"""Route policy resolution and monitor/bypass reconciliation."""

from __future__ import annotations

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.core.context import RequestContext
from pxguard.core.enums import Action, ModuleMode, RoutePolicy
from pxguard.core.models import RiskVerdict
from pxguard.util.matching import matches

BYPASS_HEADER_VALUE = "1"


def has_route_partition(config: EnforcementConfig) -> bool:
    return bool(config.enforced_routes or config.monitored_routes)


def resolve_route_policy(config: EnforcementConfig, path: str) -> RoutePolicy:
    """Enforced routes win over monitored routes; with neither configured the module mode decides."""
    if config.enforced_routes:
        return RoutePolicy.ENFORCE if matches(config.enforced_routes, path) else RoutePolicy.MONITOR_ONLY
    if config.monitored_routes:
        return RoutePolicy.MONITOR_ONLY if matches(config.monitored_routes, path) else RoutePolicy.ENFORCE
    return RoutePolicy.ENFORCE if config.module_mode is ModuleMode.ACTIVE_BLOCKING else RoutePolicy.MONITOR_ONLY


def bypass_requested(config: EnforcementConfig, ctx: RequestContext, verdict: RiskVerdict) -> bool:
    if not config.bypass_monitor_header:
        return False
    if ctx.header(config.bypass_monitor_header) != BYPASS_HEADER_VALUE:
        return False
    return verdict.score >= config.blocking_score


def effective_action(policy: RoutePolicy, config: EnforcementConfig, ctx: RequestContext, verdict: RiskVerdict) -> Action:
    if verdict.action is Action.NONE:
        return Action.NONE
    # Without route lists MONITOR_ONLY only mirrors the module mode, which the bypass header may lift.
    if policy is RoutePolicy.MONITOR_ONLY and has_route_partition(config):
        return Action.NONE
    if config.module_mode is ModuleMode.ACTIVE_BLOCKING:
        return verdict.action
    if bypass_requested(config, ctx, verdict):
        return verdict.action
    return Action.NONE
