import json
import asyncio
import logging
import itertools

import pytest
from fastapi.testclient import TestClient

from admission import AdmissionGuard
from api_server import ServerSettings, create_app, validate_parameters, parse_action
from clock_errors import LoginInvalid, InvalidAction
from clock_types import AutomationResult, ClockState
from request_context import RequestIdFilter, current_request_id

VALID_BODY = {
    "instance": "acme",
    "user": "user@example.com",
    "pass": "password123",
    "totp_secret": "JBSWY3DPEHPK3PXP",
}


class StubManager:
    def __init__(self, result=None, error=None):
        self.result = result or AutomationResult("status", ClockState.CLOCKED_OUT)
        self.error = error
        self.requests = []
        self.request_ids = []

    async def run(self, request):
        self.requests.append(request)
        self.request_ids.append(current_request_id())
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def settings(tmp_path):
    return ServerSettings(version_file=str(tmp_path / "version"))


def client_for(settings, manager=None, guard=None):
    app = create_app(settings, manager=manager or StubManager(), guard=guard or AdmissionGuard(cooldown=0))
    return TestClient(app)


@pytest.mark.parametrize("missing", [
    combo for n in range(1, 5) for combo in itertools.combinations(["instance", "user", "pass", "totp"], n)
])
def test_validator_reports_each_missing_field(missing):
    body = {"instance": "acme", "user": "u", "pass": "p", "totp": "S"}
    for field in missing:
        del body[field]
    assert validate_parameters(body) == [f"{field} is required" for field in missing]


def test_validator_accepts_either_totp_field():
    assert validate_parameters({"instance": "a", "user": "u", "pass": "p", "totp": "S"}) == []
    assert validate_parameters({"instance": "a", "user": "u", "pass": "p", "totp_secret": "S"}) == []


def test_parse_action():
    assert parse_action(None) is None
    assert parse_action("") is None
    assert parse_action("IN") == "in"
    assert parse_action("Toggle") == "toggle"
    with pytest.raises(InvalidAction):
        parse_action("sideways")
    with pytest.raises(InvalidAction):
        parse_action(1)


def test_health_without_version_file(settings):
    res = client_for(settings).get("/")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "version_timestamp": None, "version_hash": None}


def test_health_with_version_file(settings):
    with open(settings.version_file, "w") as f:
        json.dump({"version_timestamp": "2026-10-01T10:00:00Z", "version_hash": "abcdef1234567"}, f)
    res = client_for(settings).get("/")
    assert res.json() == {
        "status": "ok",
        "version_timestamp": "2026-10-01T10:00:00Z",
        "version_hash": "abcdef1234567",
    }


def test_missing_fields_return_400(settings):
    manager = StubManager()
    res = client_for(settings, manager).post("/automation", json={"user": "u"})
    assert res.status_code == 400
    body = res.json()
    assert body["errors"] == ["instance is required", "pass is required", "totp is required"]
    assert len(body["requestId"]) == 36
    assert manager.requests == []


def test_non_json_body_is_treated_as_empty(settings):
    res = client_for(settings).post("/automation", content=b"not json",
                                    headers={"Content-Type": "application/json"})
    assert res.status_code == 400
    assert len(res.json()["errors"]) == 4


def test_invalid_action_returns_400(settings):
    res = client_for(settings).post("/automation", json={**VALID_BODY, "action": "lunch"})
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid action. Valid actions: in, out, toggle"


def test_success_returns_result_and_request_id(settings):
    manager = StubManager(result=AutomationResult("in", ClockState.CLOCKED_IN))
    res = client_for(settings, manager).post(
        "/automation", json={**VALID_BODY, "action": "IN"}, headers={"X-Request-Id": "req-42"}
    )
    assert res.status_code == 200
    assert res.json() == {"requestId": "req-42", "action": "in", "state": "clocked-in"}
    assert res.headers["X-Request-Id"] == "req-42"
    assert manager.request_ids == ["req-42"]
    request = manager.requests[0]
    assert request.action == "in"
    assert request.password == "password123"
    assert request.totp_secret == "JBSWY3DPEHPK3PXP"


def test_legacy_totp_field_is_accepted(settings):
    manager = StubManager()
    body = dict(VALID_BODY)
    body["totp"] = body.pop("totp_secret")
    res = client_for(settings, manager).post("/automation", json=body)
    assert res.status_code == 200
    assert res.json()["action"] == "status"
    assert manager.requests[0].totp_secret == "JBSWY3DPEHPK3PXP"


def test_automation_failure_returns_500_and_releases_guard(settings):
    guard = AdmissionGuard(cooldown=0)
    manager = StubManager(error=LoginInvalid("Login invalid"))
    res = client_for(settings, manager, guard).post("/automation", json=VALID_BODY)
    assert res.status_code == 500
    assert res.json()["error"] == "Login invalid"
    assert not guard.is_busy


def test_unexpected_error_returns_500(settings):
    guard = AdmissionGuard(cooldown=0)
    res = client_for(settings, StubManager(error=KeyError("boom")), guard).post("/automation", json=VALID_BODY)
    assert res.status_code == 500
    assert res.json()["error"] == "Internal error"
    assert not guard.is_busy


def test_busy_server_returns_503(settings):
    guard = AdmissionGuard(cooldown=0)
    guard.try_admit()
    manager = StubManager()
    res = client_for(settings, manager, guard).post("/automation", json=VALID_BODY)
    assert res.status_code == 503
    assert res.json()["error"] == "Server busy, try again later"
    assert manager.requests == []


def test_cooldown_returns_503(settings):
    guard = AdmissionGuard(cooldown=60)
    client = client_for(settings, StubManager(), guard)
    assert client.post("/automation", json=VALID_BODY).status_code == 200
    assert client.post("/automation", json=VALID_BODY).status_code == 503


def test_validation_runs_before_admission(settings):
    guard = AdmissionGuard(cooldown=0)
    guard.try_admit()
    res = client_for(settings, guard=guard).post("/automation", json={})
    assert res.status_code == 400


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("REQUEST_COOLDOWN", "not-a-number")
    monkeypatch.setenv("TIMESHEET_HEADLESS", "0")
    monkeypatch.setenv("TIMESHEET_DUMP_DIR", "/tmp/artifacts")
    settings = ServerSettings.from_env()
    assert settings.port == 8080
    assert settings.request_cooldown == 5.0
    assert settings.headless is False
    assert settings.dump_dir == "/tmp/artifacts"


def test_non_string_totp_secret_falls_back_to_totp(settings):
    manager = StubManager()
    body = {"instance": "acme", "user": "u", "pass": "p", "totp_secret": 123, "totp": "JBSWY3DPEHPK3PXP"}
    res = client_for(settings, manager).post("/automation", json=body)
    assert res.status_code == 200
    assert manager.requests[0].totp_secret == "JBSWY3DPEHPK3PXP"


def test_rejected_request_logs_under_its_request_id(settings, caplog):
    caplog.handler.addFilter(RequestIdFilter())
    guard = AdmissionGuard(cooldown=0)
    guard.try_admit()
    client = client_for(settings, guard=guard)
    caplog.clear()
    with caplog.at_level(logging.INFO, logger="timesheet.api"):
        res = client.post(
            "/automation", json=VALID_BODY, headers={"X-Request-Id": "req-busy"}
        )
    assert res.status_code == 503
    busy = [r for r in caplog.records if r.getMessage() == "Server busy (busy)"]
    assert len(busy) == 1
    api_records = [r for r in caplog.records if r.name == "timesheet.api"]
    assert api_records and all(r.request_id == "req-busy" for r in api_records)
