import os
import time
import asyncio
import logging
from typing import Any, Optional, Protocol

from selenium import webdriver
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait
from selenium.common.exceptions import (
    JavascriptException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
import chromedriver_autoinstaller

from clock_errors import DriverFault, WaitTimeout

logger = logging.getLogger("timesheet.browser")


class BrowserDriver(Protocol):
    """What the login/action steps need from a live page. Timeouts are seconds."""

    async def navigate(self, url: str, timeout: float) -> None:
        ...

    async def wait_for_element(self, selector: str, timeout: float) -> None:
        ...

    async def evaluate(self, script: str, *args: Any) -> Any:
        ...

    async def type(self, selector: str, text: str) -> None:
        ...

    async def press_key(self, key: str) -> None:
        ...

    async def current_url(self) -> str:
        ...

    async def wait_for_condition(self, script: str, timeout: float, *args: Any) -> None:
        ...

    async def screenshot(self, path: str) -> None:
        ...

    async def page_source(self) -> str:
        ...

    async def close(self) -> None:
        ...


class SeleniumDriver:
    """BrowserDriver over a Selenium WebDriver.

    Selenium is blocking, so every call runs in a worker thread; the event loop
    keeps serving (and rejecting) requests while a step waits.
    """

    def __init__(self, driver: WebDriver):
        self.driver = driver

    async def _call(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except TimeoutException as e:
            raise WaitTimeout(str(e) or "Timed out") from e
        except WebDriverException as e:
            raise DriverFault(f"Browser error: {e.msg or e.__class__.__name__}") from e

    async def navigate(self, url, timeout):
        def _get():
            self.driver.set_page_load_timeout(timeout)
            self.driver.get(url)

        try:
            await self._call(_get)
        except WaitTimeout as e:
            raise DriverFault(f"Navigation to {url} timed out after {timeout}s") from e

    async def wait_for_element(self, selector, timeout):
        await self._call(
            lambda: WebDriverWait(self.driver, timeout).until(
                EC.presence_of_element_located((By.CSS_SELECTOR, selector))
            )
        )

    async def evaluate(self, script, *args):
        return await self._call(self.driver.execute_script, script, *args)

    async def type(self, selector, text):
        await self._call(lambda: self.driver.find_element(By.CSS_SELECTOR, selector).send_keys(text))

    async def press_key(self, key):
        selenium_key = getattr(Keys, key.upper(), key)
        await self._call(lambda: ActionChains(self.driver).send_keys(selenium_key).perform())

    async def current_url(self):
        return await self._call(lambda: self.driver.current_url or "")

    async def wait_for_condition(self, script, timeout, *args):
        # The predicate keeps polling across navigations (script context torn down mid-check).
        await self._call(
            lambda: WebDriverWait(
                self.driver, timeout, ignored_exceptions=(JavascriptException, StaleElementReferenceException)
            ).until(lambda d: d.execute_script(script, *args))
        )

    async def screenshot(self, path):
        await self._call(self.driver.save_screenshot, path)

    async def page_source(self):
        return await self._call(lambda: self.driver.page_source or "")

    async def close(self):
        await self._call(self.driver.quit)


def chrome_options(headless: bool = True) -> webdriver.ChromeOptions:
    options = webdriver.ChromeOptions()
    if headless:
        options.add_argument("--headless=new")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-setuid-sandbox")
    options.add_argument("--window-size=1280,800")
    options.add_argument("--disable-gpu")
    # Return from get() at DOMContentLoaded; later steps wait for what they need.
    options.page_load_strategy = "eager"
    options.add_experimental_option("prefs", {
        "credentials_enable_service": False,
        "profile.password_manager_enabled": False,
    })
    return options


def launch_chrome(headless: bool = True) -> SeleniumDriver:
    """Start a fresh Chrome with a clean profile (no cookies, no trusted device)."""
    chromedriver_autoinstaller.install()
    driver = webdriver.Chrome(options=chrome_options(headless))
    logger.debug(f"Chrome started (headless={headless})")
    return SeleniumDriver(driver)


async def open_chrome(headless: bool = True) -> SeleniumDriver:
    try:
        return await asyncio.to_thread(launch_chrome, headless)
    except WebDriverException as e:
        raise DriverFault(f"Failed to launch browser: {e.msg or e.__class__.__name__}") from e


async def dump_artifacts(driver: BrowserDriver, dump_dir: Optional[str], tag: str) -> Optional[str]:
    """Write screenshot, page source and URL of the current page. Never raises."""
    if not dump_dir:
        return None
    try:
        os.makedirs(dump_dir, exist_ok=True)
        ts = time.strftime("%Y%m%d_%H%M%S")
        safe_tag = "".join(c if c.isalnum() or c in ("-", "_", ".") else "_" for c in (tag or "debug"))
        base = os.path.join(dump_dir, f"{ts}_{safe_tag}")
        try:
            await driver.screenshot(base + ".png")
        except Exception as e:
            logger.debug(f"Screenshot failed: {e}")
        try:
            source = await driver.page_source()
            with open(base + ".html", "w", encoding="utf-8") as f:
                f.write(source)
        except Exception as e:
            logger.debug(f"Page source dump failed: {e}")
        try:
            url = await driver.current_url()
            with open(base + ".url.txt", "w", encoding="utf-8") as f:
                f.write(url)
        except Exception as e:
            logger.debug(f"URL dump failed: {e}")
        logger.debug(f"Wrote artifacts: {base}(.png/.html/.url.txt)")
        return base
    except OSError as e:
        # Never let debug dumping kill the run.
        logger.debug(f"Artifact dump failed: {e}")
        return None
