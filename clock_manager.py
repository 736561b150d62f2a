import os
import sys
import json
import asyncio
import getpass
import argparse
import logging
from functools import partial

from dotenv import load_dotenv

from browser_utils import open_chrome, dump_artifacts
from clock_actions import StepTimeouts, run_clock_flow
from clock_errors import AutomationError
from clock_types import AutomationRequest, AutomationResult, VALID_ACTIONS
from otp_auth import provider_for
from request_context import configure_logging, generate_request_id, run_with_request_id

logger = logging.getLogger("timesheet.manager")


class ClockManager:
    """Runs one login-and-clock flow per call in its own browser session.

    driver_factory is an async callable returning a BrowserDriver. The session
    is closed on every exit path; a failing close is logged and never hides
    the error that ended the run.
    """

    def __init__(self, driver_factory=None, totp_provider=None, timeouts=None, dump_dir=None):
        self.driver_factory = driver_factory or partial(open_chrome, True)
        self.totp_provider = totp_provider or provider_for("pyotp")
        self.timeouts = timeouts or StepTimeouts()
        self.dump_dir = dump_dir

    async def run(self, request: AutomationRequest) -> AutomationResult:
        logger.info("Starting automation")
        driver = await self.driver_factory()
        try:
            return await run_clock_flow(driver, request, self.totp_provider, self.timeouts)
        except Exception as error:
            await dump_artifacts(driver, self.dump_dir, type(error).__name__)
            raise
        finally:
            await self._close(driver)

    async def _close(self, driver) -> None:
        try:
            await driver.close()
        except Exception as e:
            logger.warning(f"Browser teardown failed: {e}")
        else:
            logger.debug("Browser closed")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Clock in or out of a BambooHR timesheet")
    parser.add_argument("-i", "--instance", default=None, help="BambooHR instance (subdomain)")
    parser.add_argument("-u", "--user", default=None, help="Login email")
    parser.add_argument("-a", "--action", choices=VALID_ACTIONS, default=None,
                        help="in, out or toggle; omit for a status check")
    parser.add_argument("--headless", action=argparse.BooleanOptionalAction,
                        default=os.environ.get("TIMESHEET_HEADLESS", "1") not in ("0", "false", "no"),
                        help="Run Chrome headless")
    parser.add_argument("--debug", action="store_true",
                        default=os.environ.get("TIMESHEET_DEBUG", "") in ("1", "true", "yes"),
                        help="Verbose debug output")
    parser.add_argument("--dump-dir", default=os.environ.get("TIMESHEET_DUMP_DIR", ""),
                        help="Directory to write debug artifacts (png/html/url) on failure")
    parser.add_argument("--totp-backend", choices=("pyotp", "oathtool"),
                        default=os.environ.get("TIMESHEET_TOTP_BACKEND", "pyotp"))
    return parser.parse_args(argv)


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(debug=args.debug)

    instance = args.instance or os.environ.get("TIMESHEET_INSTANCE", "")
    user = args.user or os.environ.get("TIMESHEET_USER", "")
    totp_secret = os.environ.get("TIMESHEET_TOTP_SECRET", "")

    # Password can come from env for convenience; otherwise prompt.
    password = os.environ.get("TIMESHEET_PASSWORD", "")
    if not password and sys.stdin.isatty():
        password = getpass.getpass(prompt="BambooHR password: ", stream=None)

    missing = [name for name, value in (
        ("instance", instance), ("user", user), ("password", password), ("totp secret", totp_secret),
    ) if not value]
    if missing:
        print(f"Missing {', '.join(missing)} (see --help and the TIMESHEET_* env vars).", file=sys.stderr)
        return 2

    request = AutomationRequest(instance=instance, user=user, password=password,
                                totp_secret=totp_secret, action=args.action)
    manager = ClockManager(
        driver_factory=partial(open_chrome, args.headless),
        totp_provider=provider_for(args.totp_backend),
        dump_dir=args.dump_dir or None,
    )
    try:
        result = asyncio.run(run_with_request_id(generate_request_id(), manager.run, request))
    except AutomationError as e:
        logger.error(f"Error: {e}")
        return 1
    print(json.dumps(result.to_dict()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
