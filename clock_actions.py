import logging
from dataclasses import dataclass
from typing import Optional

import selector_defs as selectors
from browser_utils import BrowserDriver
from clock_errors import (
    WaitTimeout,
    InstanceUnreachable,
    FormNotFound,
    AlternateLoginUnavailable,
    LoginInvalid,
    TotpFailed,
    LoginIncomplete,
    TimesheetActionFailed,
)
from clock_types import AutomationRequest, AutomationResult, ClockState, STATUS_ACTION

logger = logging.getLogger("timesheet.actions")


@dataclass(frozen=True)
class StepTimeouts:
    """Seconds allowed for each vendor-side wait.

    Credential checks and the post-OTP redirect chain are slow; form renders
    are fast, so a missing form fails quickly.
    """
    navigation: float = 10
    login_form: float = 2
    normal_login: float = 5
    credentials: float = 20
    totp_submit: float = 10
    device_trust: float = 150
    clock_control: float = 10
    clock_action: float = 20


@dataclass(frozen=True)
class ActionPlan:
    click: bool
    action: str
    state: ClockState


def resolve_action(requested: Optional[str], detected: ClockState) -> ActionPlan:
    """Decide whether to press the clock control and what state results."""
    if requested == "in":
        return ActionPlan(detected is ClockState.CLOCKED_OUT, "in", ClockState.CLOCKED_IN)
    if requested == "out":
        return ActionPlan(detected is ClockState.CLOCKED_IN, "out", ClockState.CLOCKED_OUT)
    if requested == "toggle":
        return ActionPlan(True, "toggle", detected.flipped())
    return ActionPlan(False, STATUS_ACTION, detected)


def state_from_attribute(value: str) -> ClockState:
    # The control offers clock-in only while clocked out.
    if selectors.CLOCK_IN_MARKER in (value or ""):
        return ClockState.CLOCKED_OUT
    return ClockState.CLOCKED_IN


async def step_load(driver: BrowserDriver, instance: str, timeouts: StepTimeouts) -> None:
    await driver.navigate(selectors.instance_url(instance), timeouts.navigation)
    landed_url = await driver.current_url()
    if landed_url in selectors.MARKETING_HOME_URLS:
        logger.info(f"Instance {instance} failed to load, redirected to home page ({landed_url})")
        raise InstanceUnreachable(f"Instance [{instance}] failed to load, check if the name is correct")
    logger.info("BambooHR loaded")
    try:
        await driver.wait_for_element(selectors.ANY_FORM, timeouts.login_form)
    except WaitTimeout:
        raise FormNotFound(f"Instance {instance} failed to load, the form was not found") from None
    logger.info(f"Instance {instance} loaded")


async def step_enable_normal_login(driver: BrowserDriver, timeouts: StepTimeouts) -> None:
    # SSO is the default; the email/password fields only show with this class.
    await driver.evaluate(selectors.ENABLE_NORMAL_LOGIN_JS, selectors.LOGIN_FORM, selectors.NORMAL_LOGIN_CLASS)
    try:
        await driver.wait_for_element(selectors.NORMAL_LOGIN_EMAIL, timeouts.normal_login)
    except WaitTimeout:
        raise AlternateLoginUnavailable("Failed to enable normal login option") from None
    logger.info("Normal login enabled")


async def step_credentials(driver: BrowserDriver, user: str, password: str, timeouts: StepTimeouts) -> None:
    await driver.type(selectors.EMAIL_INPUT, user)
    await driver.type(selectors.PASSWORD_INPUT, password)
    # form.submit() rather than a button click, which can double-submit
    await driver.evaluate(selectors.SUBMIT_FORM_JS, selectors.LOGIN_FORM)
    try:
        await driver.wait_for_element(selectors.TOTP_INPUT, timeouts.credentials)
    except WaitTimeout:
        raise LoginInvalid("Login invalid") from None
    logger.info("Login form submitted")


async def step_totp(driver: BrowserDriver, totp_provider, totp_secret: str, timeouts: StepTimeouts) -> None:
    code = await totp_provider.generate(totp_secret)
    await driver.type(selectors.TOTP_INPUT, code)
    url_before = await driver.current_url()
    await driver.press_key(selectors.ENTER_KEY)
    try:
        await driver.wait_for_condition(selectors.URL_CHANGED_JS, timeouts.totp_submit, url_before)
    except WaitTimeout:
        # Wrong code and a slow redirect look the same from here.
        raise TotpFailed("TOTP submission failed or took too long") from None
    logger.info("TOTP submitted")


async def step_trusted_browser(driver: BrowserDriver, timeouts: StepTimeouts) -> None:
    await driver.evaluate(selectors.CLICK_FIRST_JS, selectors.PRIMARY_BUTTON)
    logger.info("Trusted browser selected")
    try:
        await driver.wait_for_element(selectors.TIMESHEET_CLOCK, timeouts.device_trust)
    except WaitTimeout:
        raise LoginIncomplete("Login process failed or took too long") from None
    logger.info("Logged in")


async def step_current_state(driver: BrowserDriver, timeouts: StepTimeouts) -> ClockState:
    try:
        await driver.wait_for_element(selectors.PRIMARY_BUTTON, timeouts.clock_control)
    except WaitTimeout:
        raise LoginIncomplete("Timesheet clock control not found") from None
    value = await driver.evaluate(
        selectors.READ_FIRST_ATTRIBUTE_JS, selectors.PRIMARY_BUTTON, selectors.CLOCK_STATE_ATTRIBUTE
    )
    return state_from_attribute(value)


async def step_timesheet(driver: BrowserDriver, current: ClockState, timeouts: StepTimeouts) -> ClockState:
    """Press the clock control and wait until it offers the opposite action."""
    expected = current.flipped()
    # Once clocked in the control offers clock-out, and vice versa.
    marker = selectors.CLOCK_OUT_MARKER if expected is ClockState.CLOCKED_IN else selectors.CLOCK_IN_MARKER
    await driver.evaluate(selectors.CLICK_FIRST_JS, selectors.PRIMARY_BUTTON)
    try:
        await driver.wait_for_condition(
            selectors.FIRST_ATTRIBUTE_CONTAINS_JS,
            timeouts.clock_action,
            selectors.PRIMARY_BUTTON,
            selectors.CLOCK_STATE_ATTRIBUTE,
            marker,
        )
    except WaitTimeout:
        raise TimesheetActionFailed(
            f"Clock {'in' if expected is ClockState.CLOCKED_IN else 'out'} was not confirmed in time"
        ) from None
    logger.info(f"Clocked {'in' if expected is ClockState.CLOCKED_IN else 'out'}")
    return expected


async def login(driver: BrowserDriver, request: AutomationRequest, totp_provider,
                timeouts: StepTimeouts = StepTimeouts()) -> None:
    await step_load(driver, request.instance, timeouts)
    await step_enable_normal_login(driver, timeouts)
    await step_credentials(driver, request.user, request.password, timeouts)
    await step_totp(driver, totp_provider, request.totp_secret, timeouts)
    await step_trusted_browser(driver, timeouts)


async def run_clock_flow(driver: BrowserDriver, request: AutomationRequest, totp_provider,
                         timeouts: StepTimeouts = StepTimeouts()) -> AutomationResult:
    await login(driver, request, totp_provider, timeouts)

    current = await step_current_state(driver, timeouts)
    logger.info(f"Current state: {current.value}")

    plan = resolve_action(request.action, current)
    if plan.action == STATUS_ACTION:
        logger.info("No action taken, status check only")
    elif plan.click:
        await step_timesheet(driver, current, timeouts)
        logger.info(f"State changed from {current.value} to {plan.state.value}")
    else:
        logger.info(f"Already {current.value}, no action taken")
    return AutomationResult(action=plan.action, state=plan.state)
