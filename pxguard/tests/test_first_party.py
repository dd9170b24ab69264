import httpx
import pytest

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.core.context import build_context
from pxguard.core.first_party import FirstPartyRelay, RelayKind, encode_relay_body, match_first_party


def _ctx(config: EnforcementConfig, *, method: str = "GET", query: str = "", body=None, cookies: dict | None = None):
    return build_context(
        method=method,
        path="/_APP_ID/xhr/api/v1/collector",
        config=config,
        headers={"user-agent": "agent/1", "host": "shop.example", "cookie": "secret=1", "connection": "keep-alive"},
        cookies=cookies,
        socket_ip="1.2.3.4",
        query=query,
        body=body,
    )


def test_match_first_party_paths(params):
    config = EnforcementConfig.from_params(params)

    assert match_first_party("/_APP_ID/init.js", config) == (RelayKind.SCRIPT, "")
    assert match_first_party("/_APP_ID/xhr/api/v1/collector", config) == (RelayKind.XHR, "/api/v1/collector")
    assert match_first_party("/_APP_ID/other", config) is None
    assert match_first_party("/init.js", config) is None


def test_encode_relay_body():
    assert encode_relay_body(None) == b""
    assert encode_relay_body(b"raw") == b"raw"
    assert encode_relay_body("text") == b"text"
    assert encode_relay_body({"a": "1", "b": [1, 2]}) == b"a=1&b=%5B1%2C+2%5D"


def test_upstream_headers_drop_client_cookies_and_hop_by_hop(params):
    config = EnforcementConfig.from_params(params)
    headers = FirstPartyRelay().build_upstream_headers(_ctx(config, cookies={"_pxvid": "vid-3"}), config)

    assert "host" not in headers
    assert "connection" not in headers
    assert headers["cookie"] == "pxvid=vid-3"
    assert headers["x-px-first-party"] == "1"
    assert headers["x-px-enforcer-true-ip"] == "1.2.3.4"


@pytest.mark.asyncio
async def test_disabled_first_party_serves_defaults(params):
    params["px_first_party_enabled"] = False
    config = EnforcementConfig.from_params(params)
    relay = FirstPartyRelay(transport=httpx.MockTransport(lambda _r: httpx.Response(500)))

    script = await relay.relay(RelayKind.SCRIPT, "", _ctx(config), config)
    xhr = await relay.relay(RelayKind.XHR, "/api", _ctx(config), config)

    assert (script.status_code, script.body) == (200, "")
    assert (xhr.status_code, xhr.body) == (200, "{}")


@pytest.mark.asyncio
async def test_script_relay_fetches_vendor_script(params):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, headers={"content-type": "application/javascript"}, text="/* px */")

    config = EnforcementConfig.from_params(params)
    relay = FirstPartyRelay(transport=httpx.MockTransport(handler))
    result = await relay.relay(RelayKind.SCRIPT, "", _ctx(config), config)
    await relay.aclose()

    assert str(seen[0].url) == "https://client.perimeterx.net/PX_APP_ID/main.min.js"
    assert seen[0].method == "GET"
    assert result.body == "/* px */"


@pytest.mark.asyncio
async def test_xhr_relay_forwards_method_query_and_form_body(params):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    config = EnforcementConfig.from_params(params)
    relay = FirstPartyRelay(transport=httpx.MockTransport(handler))
    ctx = _ctx(config, method="POST", query="seq=2", body={"payload": "abc"})
    result = await relay.relay(RelayKind.XHR, "/api/v1/collector", ctx, config)

    assert str(seen[0].url) == "https://collector-px_app_id.perimeterx.net/api/v1/collector?seq=2"
    assert seen[0].method == "POST"
    assert seen[0].content == b"payload=abc"
    assert seen[0].headers["content-type"] == "application/x-www-form-urlencoded"
    assert result.status_code == 200


@pytest.mark.asyncio
async def test_xhr_relay_get_sends_no_body(params):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    config = EnforcementConfig.from_params(params)
    relay = FirstPartyRelay(transport=httpx.MockTransport(handler))
    await relay.relay(RelayKind.XHR, "/api", _ctx(config, body="ignored"), config)

    assert seen[0].content == b""


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("refused", request=request)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler, kind, status",
    [
        (_refuse, RelayKind.SCRIPT, 200),
        (lambda _r: httpx.Response(503), RelayKind.SCRIPT, 200),
        (_refuse, RelayKind.XHR, 502),
        (lambda _r: httpx.Response(503), RelayKind.XHR, 503),
    ],
)
async def test_upstream_failure_degrades_to_default(params, handler, kind, status):
    config = EnforcementConfig.from_params(params)
    relay = FirstPartyRelay(transport=httpx.MockTransport(handler))

    result = await relay.relay(kind, "/api", _ctx(config, method="POST"), config)

    assert result.status_code == status
    assert result.body == ("" if kind is RelayKind.SCRIPT else "{}")


@pytest.mark.asyncio
async def test_xhr_relay_strips_sensitive_headers(params):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    params["px_sensitive_headers"] = ["authorization", "x-api-key"]
    config = EnforcementConfig.from_params(params)
    ctx = build_context(
        method="POST",
        path="/_APP_ID/xhr/api/v1/collector",
        config=config,
        headers={"user-agent": "agent/1", "authorization": "Bearer site-secret", "x-api-key": "k"},
        socket_ip="1.2.3.4",
        body="payload=1",
    )
    relay = FirstPartyRelay(transport=httpx.MockTransport(handler))

    await relay.relay(RelayKind.XHR, "/api/v1/collector", ctx, config)

    assert "authorization" not in seen[0].headers
    assert "x-api-key" not in seen[0].headers
    assert seen[0].headers["user-agent"] == "agent/1"
