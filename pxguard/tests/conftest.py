import json
import logging
from collections.abc import Callable

import httpx
import pytest

from pxguard.core.enforcer import Enforcer
from pxguard.core.enums import ModuleMode
from pxguard.core.first_party import FirstPartyRelay
from pxguard.core.risk_client import RemoteRiskClient


class LoggerSpy:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def _record(self, level: str, msg: str, *args) -> None:
        self.messages.append((level, msg % args if args else msg))

    def debug(self, msg: str, *args) -> None:
        self._record("debug", msg, *args)

    def info(self, msg: str, *args) -> None:
        self._record("info", msg, *args)

    def warning(self, msg: str, *args) -> None:
        self._record("warning", msg, *args)

    def error(self, msg: str, *args) -> None:
        self._record("error", msg, *args)

    def called_with(self, level: str, text: str) -> bool:
        return (level, text) in self.messages


class RecordingActivities:
    def __init__(self) -> None:
        self.events = []

    def enqueue(self, event) -> None:
        self.events.append(event)

    def shutdown(self, timeout_seconds: float = 2.0) -> None:
        return None


def risk_handler(score: int = 0, action: str = "", calls: list | None = None) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(json.loads(request.content.decode("utf-8")))
        return httpx.Response(200, json={"status": 0, "uuid": "uuid-1", "score": score, "action": action})

    return handler


@pytest.fixture
def params() -> dict:
    return {
        "px_app_id": "PX_APP_ID",
        "px_cookie_secret": "PX_COOKIE_SECRET",
        "px_auth_token": "PX_AUTH_TOKEN",
        "px_blocking_score": 60,
        "px_logger_severity": "debug",
        "px_ip_headers": ["x-px-true-ip"],
        "px_max_activity_batch_size": 1,
        "px_module_mode": ModuleMode.ACTIVE_BLOCKING,
    }


@pytest.fixture
def make_enforcer():
    """Build an enforcer whose risk API, relay upstream and telemetry are all local fakes."""

    def factory(
        params: dict,
        *,
        score: int = 0,
        action: str = "",
        risk_calls: list | None = None,
        risk_transport: httpx.AsyncBaseTransport | None = None,
        relay_transport: httpx.AsyncBaseTransport | None = None,
        real_logger: bool = False,
    ) -> tuple[Enforcer, LoggerSpy, RecordingActivities]:
        transport = risk_transport or httpx.MockTransport(risk_handler(score, action, risk_calls))
        activities = RecordingActivities()
        enforcer = Enforcer(
            params,
            RemoteRiskClient(transport=transport),
            activities=activities,
            relay=FirstPartyRelay(transport=relay_transport or httpx.MockTransport(lambda _r: httpx.Response(404))),
        )
        spy = LoggerSpy()
        if not real_logger:
            enforcer.logger = spy
        return enforcer, spy, activities

    return factory


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def pxguard_records():
    """Records reaching the project logger's handlers."""
    handler = _ListHandler()
    project_logger = logging.getLogger("pxguard")
    project_logger.addHandler(handler)
    yield handler.records
    project_logger.removeHandler(handler)
