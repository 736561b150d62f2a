INSTANCE_URL = "https://{instance}.bamboohr.com"

# Unknown instances redirect to the vendor's marketing home page.
MARKETING_HOME_URLS = (
    "https://bamboohr.com/",
    "https://www.bamboohr.com/",
)

ANY_FORM = "form"
LOGIN_FORM = 'form[name="loginform"]'
NORMAL_LOGIN_CLASS = "show-normal-login"
EMAIL_INPUT = "#lemail"
PASSWORD_INPUT = "#password"
NORMAL_LOGIN_EMAIL = f"{LOGIN_FORM}.{NORMAL_LOGIN_CLASS} {EMAIL_INPUT}"
TOTP_INPUT = 'input[name="oneTimeCode"]'

# The highlighted MUI button: "trust this browser" after the OTP step, and
# the clock in/out control on the timesheet.
PRIMARY_BUTTON = '[class*="MuiButton-containedPrimary"]'
TIMESHEET_CLOCK = '[data-bi-id*="my-info-timesheet-clock-"]'

CLOCK_STATE_ATTRIBUTE = "data-bi-id"
CLOCK_IN_MARKER = "clock-in"
CLOCK_OUT_MARKER = "clock-out"

ENTER_KEY = "Enter"


def instance_url(instance: str) -> str:
    return INSTANCE_URL.format(instance=instance)


# Page scripts. Each is the body of a function; arguments arrive in `arguments`.
ENABLE_NORMAL_LOGIN_JS = """
const form = document.querySelector(arguments[0]);
if (form && !form.classList.contains(arguments[1])) {
    form.classList.add(arguments[1]);
}
"""

SUBMIT_FORM_JS = """
const form = document.querySelector(arguments[0]);
if (form) form.submit();
"""

CLICK_FIRST_JS = """
const buttons = document.querySelectorAll(arguments[0]);
if (buttons.length > 0) { buttons[0].click(); return true; }
return false;
"""

READ_FIRST_ATTRIBUTE_JS = """
const buttons = document.querySelectorAll(arguments[0]);
return (buttons[0] && buttons[0].getAttribute(arguments[1])) || '';
"""

URL_CHANGED_JS = "return window.location.href !== arguments[0];"

FIRST_ATTRIBUTE_CONTAINS_JS = """
const buttons = document.querySelectorAll(arguments[0]);
const value = buttons[0] && buttons[0].getAttribute(arguments[1]);
return value ? value.includes(arguments[2]) : false;
"""
