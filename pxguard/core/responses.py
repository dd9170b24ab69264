"""Block and challenge response construction."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.settings import settings
from pxguard.core.context import RequestContext
from pxguard.core.enums import Action
from pxguard.core.models import ResponseDescriptor, RiskVerdict

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
BLOCK_STATUS_CODE = 403
HTML_CONTENT_TYPE = "text/html"
JSON_CONTENT_TYPE = "application/json"

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def wants_json(ctx: RequestContext) -> bool:
    return "application/json" in ctx.content_type.lower()


def use_structured_response(config: EnforcementConfig, ctx: RequestContext) -> bool:
    return config.advanced_blocking_response_enabled and wants_json(ctx)


def _script_urls(config: EnforcementConfig, verdict: RiskVerdict, vid: str) -> dict[str, str]:
    query = urlencode({"a": verdict.action.page_name[0], "u": verdict.uuid, "v": vid, "m": 0})
    block_script = f"{settings.captcha_script_url_template.format(app_id=config.app_id)}?{query}"
    if config.first_party_enabled:
        return {
            "js_client_src": f"{config.first_party_prefix}/init.js",
            "host_url": f"{config.first_party_prefix}/xhr",
            "block_script": block_script,
        }
    return {
        "js_client_src": f"{config.backend_client_url}/{config.app_id}/main.min.js",
        "host_url": config.backend_collector_url,
        "block_script": block_script,
    }


def template_values(config: EnforcementConfig, verdict: RiskVerdict, vid: str) -> dict[str, Any]:
    return {
        "app_id": config.app_id,
        "uuid": verdict.uuid,
        "vid": vid,
        "custom_logo": config.custom_logo,
        "css_ref": config.css_ref,
        "js_ref": config.js_ref,
        "first_party_enabled": config.first_party_enabled,
        **_script_urls(config, verdict, vid),
    }


def render_page(action: Action, values: dict[str, Any]) -> str:
    template = _env.get_template(f"{action.page_name}_template.html.j2")
    return template.render(values)


def build_block_response(
    action: Action,
    config: EnforcementConfig,
    ctx: RequestContext,
    verdict: RiskVerdict,
) -> ResponseDescriptor:
    vid = verdict.vid or ctx.cookies.get(settings.first_party_vid_cookie, "")
    values = template_values(config, verdict, vid)
    html = render_page(action, values)

    if ctx.is_mobile:
        return ResponseDescriptor(
            status_code=BLOCK_STATUS_CODE,
            headers={"content-type": JSON_CONTENT_TYPE},
            body={
                "action": action.page_name,
                "uuid": verdict.uuid,
                "vid": vid,
                "appId": config.app_id,
                "page": base64.b64encode(html.encode("utf-8")).decode("ascii"),
                "collectorUrl": config.backend_collector_url,
            },
        )

    if use_structured_response(config, ctx):
        return ResponseDescriptor(
            status_code=BLOCK_STATUS_CODE,
            headers={"content-type": JSON_CONTENT_TYPE},
            body={
                "action": action.page_name,
                "score": verdict.score,
                "appId": config.app_id,
                "jsClientSrc": values["js_client_src"],
                "firstPartyEnabled": config.first_party_enabled,
                "vid": vid,
                "uuid": verdict.uuid,
                "hostUrl": values["host_url"],
                "blockScript": values["block_script"],
                "customLogo": config.custom_logo,
            },
        )

    return ResponseDescriptor(
        status_code=BLOCK_STATUS_CODE,
        headers={"content-type": HTML_CONTENT_TYPE},
        body=html,
    )
