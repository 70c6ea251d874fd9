"""Executes a single macro step against a live Playwright page."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urljoin, urlparse

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from . import locators
from .errors import (
    AssertionFailed,
    ConfigurationError,
    ElementNotInteractable,
    NavigationFailed,
    StepError,
    UnsupportedAction,
)
from .models import SECRET_SENTINEL, RunConfig, Step, StepOutcome

SECRET_ENV_VAR = "AUTOTESTER_SECRET_PASSWORD"

URL_PREFIX = "url:"
TEXT_PREFIX = "text:"

_PAIR_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*[,;\s]\s*(-?\d+(?:\.\d+)?)\s*$")
_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*$")

_ERROR_PAGE_PREFIXES = ("chrome-error://", "about:neterror", "about:certerror", "about:blocked")
_ERROR_PAGE_TITLES = (
    "404 not found",
    "500 internal server error",
    "502 bad gateway",
    "503 service unavailable",
    "problem loading page",
    "this site can’t be reached",
    "this site can't be reached",
)


@dataclass
class Timeouts:
    """Per-step timeout budget in milliseconds."""

    element_ms: int
    navigation_ms: int
    wait_until: str = "domcontentloaded"

    @classmethod
    def for_step(cls, config: RunConfig, step: Step) -> "Timeouts":
        override = step.timeout_ms if step.timeout_ms and step.timeout_ms > 0 else None
        return cls(
            element_ms=override or config.step_timeout_ms,
            navigation_ms=override or config.global_timeout_ms,
            wait_until=config.wait_until,
        )


class SecretSource:
    """Supplies the runtime value substituted for the ``__SECRET__`` sentinel."""

    def __init__(self, value: Optional[str] = None, env_var: str = SECRET_ENV_VAR) -> None:
        self._value = value
        self.env_var = env_var

    def get(self) -> Optional[str]:
        if self._value:
            return self._value
        return os.getenv(self.env_var) or None


def parse_pair(raw: str) -> Tuple[float, float]:
    match = _PAIR_RE.match(raw or "")
    if not match:
        raise ConfigurationError(f"Expected a coordinate pair 'x,y', got {raw!r}")
    return float(match.group(1)), float(match.group(2))


def parse_click_at(value: Optional[str]) -> Tuple[str, float, float]:
    """Decode a clickAt value.

    ``"x,y"`` or ``"abs:x,y"`` is an absolute viewport coordinate;
    ``"offset:dx,dy"`` (alias ``"rel:"``) is relative to the top-left corner
    of the resolved element's bounding box.
    """
    if not value:
        raise ConfigurationError("clickAt requires a coordinate value")
    text = value.strip()
    mode = "absolute"
    for prefix, prefix_mode in (("abs:", "absolute"), ("offset:", "offset"), ("rel:", "offset")):
        if text.startswith(prefix):
            mode = prefix_mode
            text = text[len(prefix):]
            break
    x, y = parse_pair(text)
    return mode, x, y


def parse_scroll(value: Optional[str]) -> Tuple[Optional[float], float]:
    """Decode a scrollTo value: ``"x,y"`` or a single vertical position ``"y"``."""
    if not value:
        raise ConfigurationError("scrollTo requires a position value")
    single = _NUMBER_RE.match(value)
    if single:
        return None, float(single.group(1))
    x, y = parse_pair(value)
    return x, y


def parse_css_expectation(value: Optional[str]) -> Tuple[str, str]:
    """Decode ``"property:expected-substring"`` for assertCss."""
    if not value or ":" not in value:
        raise ConfigurationError(f"assertCss value must be 'property:expected', got {value!r}")
    prop, expected = value.split(":", 1)
    prop = prop.strip()
    if not prop:
        raise ConfigurationError(f"assertCss value is missing the property name: {value!r}")
    return prop, expected.strip()


def validate_step_value(step: Step) -> None:
    """Check the value encoding of actions that have one; raises ConfigurationError."""
    try:
        if step.action_type == "clickAt":
            mode, _, _ = parse_click_at(step.value)
            if mode == "offset" and not step.locators:
                raise ConfigurationError("clickAt offset requires locator candidates")
        elif step.action_type == "scrollTo":
            parse_scroll(step.value)
        elif step.action_type == "assertCss":
            parse_css_expectation(step.value)
        elif step.action_type == "assertCursor":
            if not step.value or not step.value.strip():
                raise ConfigurationError("assertCursor requires the expected cursor keyword")
        elif step.action_type == "navigation":
            if not step.value or not step.value.strip():
                raise ConfigurationError("navigation requires a target URL")
    except ConfigurationError as exc:
        raise ConfigurationError(f"Step {step.order_index} ({step.action_type}): {exc}") from exc


def is_absolute_url(value: str) -> bool:
    return urlparse(value).scheme in ("http", "https", "file", "about", "data")


def resolve_url(target: str, base_url: Optional[str]) -> str:
    target = target.strip()
    if is_absolute_url(target):
        return target
    if not base_url:
        raise NavigationFailed(f"Cannot resolve relative URL {target!r} without a base URL")
    return urljoin(base_url.rstrip("/"), target)


def url_matches(current: str, expected: str) -> bool:
    """Exact match for absolute URLs, containment in path/query for relative ones."""
    expected = expected.strip()
    if is_absolute_url(expected):
        return current.rstrip("/") == expected.rstrip("/")
    parsed = urlparse(current)
    if expected in parsed.path:
        return True
    relative = parsed.path + (f"?{parsed.query}" if parsed.query else "")
    return expected in relative


def format_error(exc: Exception) -> str:
    if isinstance(exc, PlaywrightTimeoutError):
        first_line = str(exc).strip().splitlines()[0] if str(exc).strip() else "operation timed out"
        return f"Timeout: {first_line}"
    if isinstance(exc, PlaywrightError):
        message = str(exc).strip()
        return message.splitlines()[0] if message else exc.__class__.__name__
    return str(exc) or exc.__class__.__name__


class StepExecutor:
    """Performs one step and classifies the result; never raises outward."""

    def __init__(self, secrets: Optional[SecretSource] = None) -> None:
        self.secrets = secrets or SecretSource()
        self.logger = logging.getLogger("autotester.step_executor")
        self._handlers: Dict[str, Callable[..., StepOutcome]] = {
            "navigation": self._handle_navigation,
            "waitFor": self._handle_wait_for,
            "assert": self._handle_assert,
            "type": self._handle_type,
            "click": self._handle_pointer,
            "dblclick": self._handle_pointer,
            "hover": self._handle_pointer,
            "check": self._handle_pointer,
            "uncheck": self._handle_pointer,
            "select": self._handle_select,
            "clickAt": self._handle_click_at,
            "scrollTo": self._handle_scroll_to,
            "assertCss": self._handle_assert_css,
            "assertCursor": self._handle_assert_cursor,
        }

    def execute(self, step: Step, page, base_url: Optional[str], timeouts: Timeouts) -> StepOutcome:
        handler = self._handlers.get(step.action_type)
        try:
            if handler is None:
                raise UnsupportedAction(f"Unsupported action_type: {step.action_type}")
            return handler(step, page, base_url, timeouts)
        except StepError as exc:
            return StepOutcome.failed(str(exc), kind=exc.__class__.__name__)
        except PlaywrightTimeoutError as exc:
            return StepOutcome.failed(format_error(exc), kind="Timeout")
        except ConfigurationError as exc:
            return StepOutcome.failed(str(exc), kind=exc.__class__.__name__)
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.debug("Step %s raised unexpectedly", step.order_index, exc_info=True)
            return StepOutcome.failed(format_error(exc), kind=exc.__class__.__name__)

    # pylint: disable=unused-argument
    def _handle_navigation(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        target = resolve_url(step.value or "", base_url)
        navigate(page, target, timeouts.navigation_ms, timeouts.wait_until)
        return StepOutcome.passed()

    def _handle_wait_for(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        if step.value and step.value.startswith(URL_PREFIX):
            expected = step.value[len(URL_PREFIX):]
            page.wait_for_url(lambda url: url_matches(url, expected), timeout=timeouts.navigation_ms)
            return StepOutcome.passed()
        found = locators.resolve(page, step.locators)
        locators.ensure_interactable(found.handle, timeouts.element_ms)
        return StepOutcome.passed(found.used)

    def _handle_assert(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        value = step.value or ""
        if value.startswith(URL_PREFIX):
            expected = value[len(URL_PREFIX):]
            try:
                page.wait_for_url(lambda url: url_matches(url, expected), timeout=timeouts.navigation_ms)
            except PlaywrightTimeoutError:
                self.logger.debug("URL did not settle on %s before timeout", expected)
            if not url_matches(page.url, expected):
                raise AssertionFailed(f"URL does not contain {expected}")
            return StepOutcome.passed()

        found = locators.resolve(page, step.locators)
        if value.startswith(TEXT_PREFIX):
            expected = value[len(TEXT_PREFIX):]
            locators.ensure_interactable(found.handle, timeouts.element_ms)
            text = found.handle.text_content(timeout=timeouts.element_ms) or ""
            if expected not in text:
                raise AssertionFailed(f"Text does not contain {expected}")
        else:
            locators.ensure_interactable(found.handle, timeouts.element_ms, require_enabled=False)
        return StepOutcome.passed(found.used)

    def _handle_type(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        value = step.value or ""
        if value == SECRET_SENTINEL:
            secret = self.secrets.get()
            if not secret:
                return StepOutcome.skipped(
                    f"secret value not configured (set {self.secrets.env_var}); input not typed")
            value = secret
        found = locators.resolve(page, step.locators)
        locators.ensure_interactable(found.handle, timeouts.element_ms)
        found.handle.fill(value, timeout=timeouts.element_ms)
        return StepOutcome.passed(found.used)

    def _handle_pointer(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        found = locators.resolve(page, step.locators)
        locators.ensure_interactable(found.handle, timeouts.element_ms)
        action = getattr(found.handle, _POINTER_METHODS[step.action_type])
        action(timeout=timeouts.element_ms)
        return StepOutcome.passed(found.used)

    def _handle_select(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        found = locators.resolve(page, step.locators)
        locators.ensure_interactable(found.handle, timeouts.element_ms)
        found.handle.select_option(step.value or "", timeout=timeouts.element_ms)
        return StepOutcome.passed(found.used)

    def _handle_click_at(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        mode, x, y = parse_click_at(step.value)
        if mode == "absolute":
            page.mouse.click(x, y)
            return StepOutcome.passed()
        found = locators.resolve(page, step.locators)
        locators.ensure_interactable(found.handle, timeouts.element_ms)
        box = found.handle.bounding_box()
        if not box:
            raise ElementNotInteractable("Element has no bounding box")
        page.mouse.click(box["x"] + x, box["y"] + y)
        return StepOutcome.passed(found.used)

    def _handle_scroll_to(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        x, y = parse_scroll(step.value)
        if x is None:
            page.evaluate("(y) => window.scrollTo(window.scrollX, y)", y)
        else:
            page.evaluate("([x, y]) => window.scrollTo(x, y)", [x, y])
        return StepOutcome.passed()

    def _handle_assert_css(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        prop, expected = parse_css_expectation(step.value)
        found = locators.resolve(page, step.locators)
        locators.ensure_interactable(found.handle, timeouts.element_ms, require_enabled=False)
        actual = computed_style(found.handle, prop)
        if expected not in actual:
            raise AssertionFailed(f"CSS {prop} is '{actual}', expected it to contain '{expected}'")
        return StepOutcome.passed(found.used)

    def _handle_assert_cursor(self, step: Step, page, base_url, timeouts: Timeouts) -> StepOutcome:
        expected = (step.value or "").strip()
        found = locators.resolve(page, step.locators)
        locators.ensure_interactable(found.handle, timeouts.element_ms, require_enabled=False)
        actual = computed_style(found.handle, "cursor").strip()
        if actual != expected:
            raise AssertionFailed(f"Cursor is '{actual}', expected '{expected}'")
        return StepOutcome.passed(found.used)


_POINTER_METHODS = {
    "click": "click",
    "dblclick": "dblclick",
    "hover": "hover",
    "check": "check",
    "uncheck": "uncheck",
}


def computed_style(handle, prop: str) -> str:
    value = handle.evaluate("(el, prop) => getComputedStyle(el).getPropertyValue(prop)", prop)
    return str(value or "")


def navigate(page, url: str, timeout_ms: int, wait_until: str) -> None:
    """Navigate and treat HTTP >= 400 or a browser error page as failure.

    Raises:
        NavigationFailed: on any navigation problem.
    """
    try:
        response = page.goto(url, wait_until=wait_until, timeout=timeout_ms)
    except PlaywrightError as exc:
        raise NavigationFailed(f"Navigation to {url} failed: {format_error(exc)}") from exc

    if response is not None and response.status >= 400:
        raise NavigationFailed(f"Navigation to {url} returned HTTP {response.status}")

    current = page.url or ""
    if current.startswith(_ERROR_PAGE_PREFIXES):
        raise NavigationFailed(f"Navigation to {url} ended on an error page ({current})")
    try:
        title = (page.title() or "").strip().lower()
    except PlaywrightError:
        title = ""
    if title in _ERROR_PAGE_TITLES:
        raise NavigationFailed(f"Navigation to {url} ended on an error page titled '{title}'")
