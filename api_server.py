"""
HTTP front for the timesheet clock automation.

    GET  /            health and build version
    POST /automation  {instance, user, pass, totp_secret (or totp), action?}

Requests are validated and admitted before any browser work starts. Only one
automation runs at a time; extra requests get 503 and should retry later.
Every response carries the request id (X-Request-Id header in, or generated).
"""

import os
import json
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from admission import AdmissionGuard, DEFAULT_COOLDOWN_SECONDS
from browser_utils import open_chrome
from clock_errors import AdmissionDenied, AutomationError, ValidationError, InvalidAction
from clock_manager import ClockManager
from clock_types import AutomationRequest, VALID_ACTIONS
from otp_auth import provider_for
from request_context import configure_logging, generate_request_id, run_with_request_id

logger = logging.getLogger("timesheet.api")

REQUEST_ID_HEADER = "X-Request-Id"
DEFAULT_VERSION_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "version")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    request_cooldown: float = DEFAULT_COOLDOWN_SECONDS
    headless: bool = True
    dump_dir: Optional[str] = None
    debug: bool = False
    totp_backend: str = "pyotp"
    version_file: str = DEFAULT_VERSION_FILE

    @classmethod
    def from_env(cls) -> "ServerSettings":
        return cls(
            host=os.environ.get("HOST", cls.host),
            port=int(_env_float("PORT", cls.port)),
            request_cooldown=_env_float("REQUEST_COOLDOWN", DEFAULT_COOLDOWN_SECONDS),
            headless=_env_flag("TIMESHEET_HEADLESS", True),
            dump_dir=os.environ.get("TIMESHEET_DUMP_DIR") or None,
            debug=_env_flag("TIMESHEET_DEBUG", False),
            totp_backend=os.environ.get("TIMESHEET_TOTP_BACKEND", "pyotp"),
            version_file=os.environ.get("VERSION_FILE") or DEFAULT_VERSION_FILE,
        )


def load_version_info(path: str) -> Dict[str, Any]:
    info = {"version_timestamp": None, "version_hash": None}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        info["version_timestamp"] = data.get("version_timestamp")
        info["version_hash"] = data.get("version_hash")
        logger.info(f"Version loaded: {(info['version_hash'] or '')[:7]} ({info['version_timestamp']})")
    except (OSError, ValueError, AttributeError) as e:
        logger.info(f"Version file not found or invalid, using defaults: {e}")
    return info


def _present(value) -> bool:
    return isinstance(value, str) and value != ""


def validate_parameters(body: Dict[str, Any]) -> List[str]:
    errors = []
    if not _present(body.get("instance")):
        errors.append("instance is required")
    if not _present(body.get("user")):
        errors.append("user is required")
    if not _present(body.get("pass")):
        errors.append("pass is required")
    if not (_present(body.get("totp_secret")) or _present(body.get("totp"))):
        errors.append("totp is required")
    return errors


def parse_action(raw) -> Optional[str]:
    if raw is None or raw == "":
        return None
    action = raw.lower() if isinstance(raw, str) else None
    if action not in VALID_ACTIONS:
        raise InvalidAction(f"Invalid action. Valid actions: {', '.join(VALID_ACTIONS)}")
    return action


def parse_automation_request(body: Dict[str, Any]) -> AutomationRequest:
    errors = validate_parameters(body)
    if errors:
        raise ValidationError(errors)
    return AutomationRequest(
        instance=body["instance"],
        user=body["user"],
        password=body["pass"],
        totp_secret=body["totp_secret"] if _present(body.get("totp_secret")) else body["totp"],
        action=parse_action(body.get("action")),
    )


async def _read_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def create_app(settings: Optional[ServerSettings] = None, manager: Optional[ClockManager] = None,
               guard: Optional[AdmissionGuard] = None) -> FastAPI:
    settings = settings or ServerSettings()
    app = FastAPI(title="Timesheet Clock API")
    app.state.settings = settings
    app.state.guard = guard or AdmissionGuard(cooldown=settings.request_cooldown)
    app.state.manager = manager or ClockManager(
        driver_factory=partial(open_chrome, settings.headless),
        totp_provider=provider_for(settings.totp_backend),
        dump_dir=settings.dump_dir,
    )
    app.state.version_info = load_version_info(settings.version_file)

    @app.get("/")
    async def health():
        return {"status": "ok", **app.state.version_info}

    @app.post("/automation")
    async def automation(request: Request):
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        body = await _read_body(request)
        status, payload = await run_with_request_id(request_id, _handle_automation, app, body)
        return JSONResponse(
            status_code=status,
            content={"requestId": request_id, **payload},
            headers={REQUEST_ID_HEADER: request_id},
        )

    return app


async def _handle_automation(app: FastAPI, body: Dict[str, Any]):
    logger.info("Request received")
    try:
        automation_request = parse_automation_request(body)
    except InvalidAction as e:
        logger.info(f"Invalid action: {body.get('action')}")
        return 400, {"error": e.message}
    except ValidationError as e:
        logger.info(f"Validation failed: {', '.join(e.errors)}")
        return 400, {"errors": e.errors}
    logger.info(f"Action requested: {automation_request.action or 'status check'}")

    guard: AdmissionGuard = app.state.guard
    try:
        guard.admit()
    except AdmissionDenied as e:
        logger.info(f"Server busy ({e.reason.value})")
        return 503, {"error": "Server busy, try again later"}
    logger.info("Processing request")

    try:
        result = await app.state.manager.run(automation_request)
        return 200, result.to_dict()
    except AutomationError as e:
        logger.warning(f"Error: {e}")
        return 500, {"error": str(e)}
    except Exception:
        logger.exception("Unexpected error during automation")
        return 500, {"error": "Internal error"}
    finally:
        guard.release()
        logger.info("Request processing completed")


def main() -> None:
    import uvicorn

    load_dotenv()
    settings = ServerSettings.from_env()
    configure_logging(debug=settings.debug)
    app = create_app(settings)
    logger.info(f"Timesheet API running on port {settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
