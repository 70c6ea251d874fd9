"""Tests for StepExecutor dispatch by action_type against a fake page."""
from __future__ import annotations

import pytest
from playwright.sync_api import Error as PlaywrightError

from autotester.errors import ConfigurationError
from autotester.models import FAIL, PASS, SKIPPED, Locator, Step
from autotester.step_executor import (
    SecretSource,
    StepExecutor,
    Timeouts,
    parse_click_at,
    parse_css_expectation,
    parse_scroll,
    resolve_url,
    url_matches,
    validate_step_value,
)

TARGET = Locator(type="data", value='[data-testid="target"]')
TIMEOUTS = Timeouts(element_ms=50, navigation_ms=50)
BASE = "https://app.example.com"


def make_step(action: str, value=None, locators=None, order: int = 1) -> Step:
    return Step(
        id=order,
        macro_id=1,
        order_index=order,
        action_type=action,
        locators=[TARGET] if locators is None else locators,
        value=value,
    )


@pytest.fixture
def executor() -> StepExecutor:
    return StepExecutor(secrets=SecretSource(env_var="AUTOTESTER_TEST_SECRET_UNSET"))


def test_assert_url_matches_path_containment(executor, page):
    page.url = "https://app.example.com/dashboard?x=1"

    outcome = executor.execute(make_step("assert", "url:/dashboard", locators=[]), page, BASE, TIMEOUTS)

    assert outcome.status == PASS
    assert outcome.used_locator is None


def test_assert_url_mismatch_fails(executor, page):
    page.url = "https://app.example.com/login"

    outcome = executor.execute(make_step("assert", "url:/dashboard", locators=[]), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert outcome.error_message == "URL does not contain /dashboard"
    assert outcome.error_kind == "AssertionFailed"


def test_assert_text_reports_missing_substring(executor, page, make_element):
    page.add(TARGET.value, make_element(text="Hello there"))

    outcome = executor.execute(make_step("assert", "text:Welcome"), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert outcome.error_message == "Text does not contain Welcome"


def test_assert_text_passes_and_reports_used_locator(executor, page, make_element):
    page.add(TARGET.value, make_element(text="Welcome back, Ada"))

    outcome = executor.execute(make_step("assert", "text:Welcome"), page, BASE, TIMEOUTS)

    assert outcome.status == PASS
    assert outcome.used_locator == TARGET


def test_plain_assert_only_requires_visibility(executor, page, make_element):
    page.add(TARGET.value, make_element(enabled=False))

    assert executor.execute(make_step("assert"), page, BASE, TIMEOUTS).status == PASS


def test_secret_without_source_is_skipped(executor, page, make_element):
    page.add(TARGET.value, make_element())

    outcome = executor.execute(make_step("type", "__SECRET__"), page, BASE, TIMEOUTS)

    assert outcome.status == SKIPPED
    assert "AUTOTESTER_TEST_SECRET_UNSET" in outcome.error_message
    assert page.actions == []


def test_secret_is_substituted_when_configured(page, make_element):
    field = make_element()
    page.add(TARGET.value, field)
    executor = StepExecutor(secrets=SecretSource(value="s3cret"))

    outcome = executor.execute(make_step("type", "__SECRET__"), page, BASE, TIMEOUTS)

    assert outcome.status == PASS
    assert field.value == "s3cret"


def test_secret_read_from_environment(monkeypatch, page, make_element):
    monkeypatch.setenv("AUTOTESTER_SECRET_PASSWORD", "from-env")
    field = make_element()
    page.add(TARGET.value, field)

    outcome = StepExecutor().execute(make_step("type", "__SECRET__"), page, BASE, TIMEOUTS)

    assert outcome.status == PASS
    assert field.value == "from-env"


@pytest.mark.parametrize("action", ["click", "dblclick", "hover", "check", "uncheck"])
def test_pointer_actions(executor, page, make_element, action):
    element = make_element()
    page.add(TARGET.value, element)

    outcome = executor.execute(make_step(action), page, BASE, TIMEOUTS)

    assert outcome.status == PASS
    assert page.actions == [(action, element)]


def test_click_on_disabled_element_fails(executor, page, make_element):
    page.add(TARGET.value, make_element(enabled=False))

    outcome = executor.execute(make_step("click"), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert outcome.error_kind == "ElementNotInteractable"


def test_missing_element_fails_with_locator_not_found(executor, page):
    outcome = executor.execute(make_step("click"), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert outcome.error_kind == "LocatorNotFound"


def test_select_uses_value_as_option(executor, page, make_element):
    element = make_element()
    page.add(TARGET.value, element)

    executor.execute(make_step("select", "blue"), page, BASE, TIMEOUTS)

    assert page.actions == [("select", element, "blue")]


def test_navigation_resolves_relative_url(executor, page):
    outcome = executor.execute(make_step("navigation", "/settings", locators=[]), page, BASE, TIMEOUTS)

    assert outcome.status == PASS
    assert page.visits == ["https://app.example.com/settings"]


def test_navigation_http_error_fails(executor, page):
    page.responses["https://app.example.com/missing"] = 404

    outcome = executor.execute(make_step("navigation", "/missing", locators=[]), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert "HTTP 404" in outcome.error_message
    assert outcome.error_kind == "NavigationFailed"


def test_navigation_error_page_fails(executor, page):
    page.redirects["https://down.example.com/"] = "chrome-error://chromewebdata/"

    outcome = executor.execute(make_step("navigation", "https://down.example.com/", locators=[]), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert "error page" in outcome.error_message


def test_navigation_driver_error_fails(executor, page):
    page.goto_errors["https://app.example.com/"] = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

    outcome = executor.execute(make_step("navigation", "https://app.example.com/", locators=[]), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert "ERR_NAME_NOT_RESOLVED" in outcome.error_message


def test_wait_for_url_times_out_as_failure(executor, page):
    page.url = "https://app.example.com/login"

    outcome = executor.execute(make_step("waitFor", "url:/home", locators=[]), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert outcome.error_message.startswith("Timeout")


def test_wait_for_element(executor, page, make_element):
    page.add(TARGET.value, make_element())

    outcome = executor.execute(make_step("waitFor"), page, BASE, TIMEOUTS)

    assert outcome.status == PASS
    assert outcome.used_locator == TARGET


def test_click_at_absolute_and_offset(executor, page, make_element):
    page.add(TARGET.value, make_element(box={"x": 100, "y": 40, "width": 50, "height": 20}))

    assert executor.execute(make_step("clickAt", "10,20", locators=[]), page, BASE, TIMEOUTS).status == PASS
    assert executor.execute(make_step("clickAt", "offset:5,6"), page, BASE, TIMEOUTS).status == PASS

    assert page.actions == [("mouse.click", 10.0, 20.0), ("mouse.click", 105.0, 46.0)]


def test_scroll_to_pair_and_single_value(executor, page):
    executor.execute(make_step("scrollTo", "0,300", locators=[]), page, BASE, TIMEOUTS)
    executor.execute(make_step("scrollTo", "450", locators=[]), page, BASE, TIMEOUTS)

    assert [arg for _, arg in page.evaluations] == [[0.0, 300.0], 450.0]


def test_assert_css_substring(executor, page, make_element):
    page.add(TARGET.value, make_element(styles={"background-color": "rgb(0, 0, 0)"}))

    passed = executor.execute(make_step("assertCss", "background-color:rgb(0, 0"), page, BASE, TIMEOUTS)
    failed = executor.execute(make_step("assertCss", "background-color:rgb(255"), page, BASE, TIMEOUTS)

    assert passed.status == PASS
    assert failed.status == FAIL
    assert failed.error_kind == "AssertionFailed"


def test_assert_cursor_is_exact(executor, page, make_element):
    page.add(TARGET.value, make_element(styles={"cursor": "pointer"}))

    assert executor.execute(make_step("assertCursor", "pointer"), page, BASE, TIMEOUTS).status == PASS
    outcome = executor.execute(make_step("assertCursor", "point"), page, BASE, TIMEOUTS)
    assert outcome.status == FAIL
    assert outcome.error_message == "Cursor is 'pointer', expected 'point'"


def test_unsupported_action(executor, page):
    outcome = executor.execute(make_step("drag"), page, BASE, TIMEOUTS)

    assert outcome.status == FAIL
    assert outcome.error_message == "Unsupported action_type: drag"
    assert outcome.error_kind == "UnsupportedAction"


def test_executor_never_raises(executor, page):

    def explode(*_args, **_kwargs):
        raise RuntimeError("driver crashed")

    page.locator = explode
    page.get_by_role = explode
    page.goto = explode

    for action in ("click", "navigation", "assert"):
        outcome = executor.execute(make_step(action, "/x"), page, BASE, TIMEOUTS)
        assert outcome.status == FAIL


def test_value_parsers():
    assert parse_click_at("12, 34") == ("absolute", 12.0, 34.0)
    assert parse_click_at("abs:1,2") == ("absolute", 1.0, 2.0)
    assert parse_click_at("rel:-3,4.5") == ("offset", -3.0, 4.5)
    assert parse_scroll("200") == (None, 200.0)
    assert parse_scroll("10;20") == (10.0, 20.0)
    assert parse_css_expectation("color: rgb(1, 2, 3)") == ("color", "rgb(1, 2, 3)")
    for parser, value in ((parse_click_at, "here"), (parse_scroll, ""), (parse_css_expectation, "color")):
        with pytest.raises(ConfigurationError):
            parser(value)


def test_validate_step_value_names_the_step():
    with pytest.raises(ConfigurationError, match="Step 3 \\(clickAt\\)"):
        validate_step_value(make_step("clickAt", "somewhere", order=3))
    with pytest.raises(ConfigurationError):
        validate_step_value(make_step("clickAt", "offset:1,1", locators=[]))
    validate_step_value(make_step("click"))


def test_url_helpers():
    assert url_matches("https://a.test/dashboard?x=1", "/dashboard")
    assert url_matches("https://a.test/list?page=2", "/list?page=2")
    assert url_matches("https://a.test/home/", "https://a.test/home")
    assert not url_matches("https://a.test/home/extra", "https://a.test/home")
    assert resolve_url("https://other.test/x", BASE) == "https://other.test/x"
    assert resolve_url("/x", BASE + "/") == "https://app.example.com/x"


def test_timeouts_prefer_step_override(run_config):
    step = make_step("click")
    assert Timeouts.for_step(run_config, step).element_ms == run_config.step_timeout_ms
    step.timeout_ms = 1234
    timeouts = Timeouts.for_step(run_config, step)
    assert (timeouts.element_ms, timeouts.navigation_ms) == (1234, 1234)
