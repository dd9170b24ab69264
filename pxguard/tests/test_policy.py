import re

import pytest

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.core.context import build_context
from pxguard.core.enums import Action, ModuleMode, RoutePolicy, VerdictSource
from pxguard.core.models import RiskVerdict
from pxguard.core.policy import effective_action, resolve_route_policy


def _config(params: dict, **overrides) -> EnforcementConfig:
    return EnforcementConfig.from_params({**params, **overrides})


def _verdict(score: int = 100, action: str = "b") -> RiskVerdict:
    return RiskVerdict.from_score(score=score, action_code=action, blocking_score=60, source=VerdictSource.REMOTE)


def _ctx(config: EnforcementConfig, headers: dict | None = None):
    return build_context(method="GET", path="/", config=config, headers=headers, socket_ip="1.2.3.4")


@pytest.mark.parametrize(
    "path, expected",
    [("/checkout", RoutePolicy.ENFORCE), ("/profile", RoutePolicy.MONITOR_ONLY), ("/other", RoutePolicy.MONITOR_ONLY)],
)
def test_enforced_routes_take_precedence(params, path, expected):
    config = _config(params, px_enforced_routes=["/checkout"], px_monitored_routes=["/checkout", "/profile"])
    assert resolve_route_policy(config, path) is expected


def test_monitored_routes_partition_the_rest(params):
    config = _config(params, px_monitored_routes=[re.compile(r"^/profile")])
    assert resolve_route_policy(config, "/profile/edit") is RoutePolicy.MONITOR_ONLY
    assert resolve_route_policy(config, "/checkout") is RoutePolicy.ENFORCE


@pytest.mark.parametrize(
    "mode, expected",
    [(ModuleMode.ACTIVE_BLOCKING, RoutePolicy.ENFORCE), (ModuleMode.MONITOR, RoutePolicy.MONITOR_ONLY)],
)
def test_global_mode_without_route_lists(params, mode, expected):
    assert resolve_route_policy(_config(params, px_module_mode=mode), "/any") is expected


def test_none_action_never_applies(params):
    config = _config(params)
    assert effective_action(RoutePolicy.ENFORCE, config, _ctx(config), _verdict(score=10)) is Action.NONE


def test_active_blocking_applies_verdict_action(params):
    config = _config(params)
    assert effective_action(RoutePolicy.ENFORCE, config, _ctx(config), _verdict(action="c")) is Action.CHALLENGE


def test_monitored_route_ignores_bypass_header(params):
    config = _config(params, px_monitored_routes=["/profile"], px_bypass_monitor_header="x-px-block")
    ctx = _ctx(config, {"x-px-block": "1"})
    assert effective_action(RoutePolicy.MONITOR_ONLY, config, ctx, _verdict()) is Action.NONE


@pytest.mark.parametrize(
    "headers, score, expected",
    [
        ({"x-px-block": "1"}, 100, Action.BLOCK),
        ({"x-px-block": "0"}, 100, Action.NONE),
        ({}, 100, Action.NONE),
    ],
)
def test_monitor_mode_bypass_header(params, headers, score, expected):
    config = _config(params, px_module_mode=ModuleMode.MONITOR, px_bypass_monitor_header="x-px-block")
    policy = resolve_route_policy(config, "/")
    assert effective_action(policy, config, _ctx(config, headers), _verdict(score=score)) is expected


def test_bypass_header_ignored_when_not_configured(params):
    config = _config(params, px_module_mode=ModuleMode.MONITOR)
    ctx = _ctx(config, {"x-px-block": "1"})
    assert effective_action(RoutePolicy.MONITOR_ONLY, config, ctx, _verdict()) is Action.NONE
