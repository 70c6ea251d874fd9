"""Pytest fixtures: in-memory stand-ins for the Playwright sync API."""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from autotester.models import RunConfig
from autotester.runner import BrowserSession
from autotester.storage import open_repository


class FakeElement:

    def __init__(
        self,
        text: str = "",
        visible: bool = True,
        enabled: bool = True,
        styles: Optional[Dict[str, str]] = None,
        box: Optional[Dict[str, float]] = None,
        label: str = "",
    ) -> None:
        self.text = text
        self.visible = visible
        self.enabled = enabled
        self.styles = styles or {}
        self.box = box
        self.label = label
        self.value: Optional[str] = None

    def __repr__(self) -> str:
        return f"FakeElement({self.label or self.text!r})"


class FakeLocator:

    def __init__(self, page: "FakePage", elements: List[FakeElement], error: Optional[Exception] = None) -> None:
        self.page = page
        self.elements = elements
        self.error = error

    def count(self) -> int:
        if self.error:
            raise self.error
        return len(self.elements)

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.page, self.elements[:1])

    def _element(self) -> FakeElement:
        if not self.elements:
            raise PlaywrightTimeoutError("Timeout exceeded waiting for locator")
        return self.elements[0]

    def wait_for(self, state: str = "visible", timeout: Optional[int] = None) -> None:
        element = self._element()
        if state == "visible" and not element.visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    def is_enabled(self) -> bool:
        return self._element().enabled

    def text_content(self, timeout: Optional[int] = None) -> str:
        return self._element().text

    def _act(self, name: str, *args: Any) -> None:
        self.page.actions.append((name, self._element(), *args))

    def click(self, timeout: Optional[int] = None) -> None:
        self._act("click")

    def dblclick(self, timeout: Optional[int] = None) -> None:
        self._act("dblclick")

    def hover(self, timeout: Optional[int] = None) -> None:
        self._act("hover")

    def check(self, timeout: Optional[int] = None) -> None:
        self._act("check")

    def uncheck(self, timeout: Optional[int] = None) -> None:
        self._act("uncheck")

    def fill(self, value: str, timeout: Optional[int] = None) -> None:
        self._element().value = value
        self._act("fill", value)

    def select_option(self, value: str, timeout: Optional[int] = None) -> None:
        self._element().value = value
        self._act("select", value)

    def bounding_box(self) -> Optional[Dict[str, float]]:
        return self._element().box

    def evaluate(self, expression: str, arg: Any = None) -> Any:
        return self._element().styles.get(arg, "")


class FakeResponse:

    def __init__(self, status: int) -> None:
        self.status = status


class FakeMouse:

    def __init__(self, page: "FakePage") -> None:
        self.page = page

    def click(self, x: float, y: float) -> None:
        self.page.actions.append(("mouse.click", x, y))


class FakePage:
    # pylint: disable=too-many-instance-attributes

    def __init__(self, url: str = "about:blank") -> None:
        self.url = url
        self.selectors: Dict[str, List[FakeElement]] = {}
        self.roles: Dict[tuple, List[FakeElement]] = {}
        self.broken: set = set()
        self.responses: Dict[str, int] = {}
        self.goto_errors: Dict[str, Exception] = {}
        self.redirects: Dict[str, str] = {}
        self.page_title = ""
        self.actions: List[tuple] = []
        self.visits: List[str] = []
        self.evaluations: List[tuple] = []
        self.screenshots: List[str] = []
        self.fail_screenshot = False
        self.mouse = FakeMouse(self)

    def add(self, selector: str, *elements: FakeElement) -> None:
        self.selectors.setdefault(selector, []).extend(elements)

    def add_role(self, role: str, name: Optional[str], *elements: FakeElement) -> None:
        self.roles.setdefault((role, name), []).extend(elements)

    def locator(self, selector: str) -> FakeLocator:
        if selector in self.broken:
            return FakeLocator(self, [], error=PlaywrightError(f"Unexpected token in selector {selector}"))
        return FakeLocator(self, self.selectors.get(selector, []))

    def get_by_role(self, role: str, name: Optional[str] = None) -> FakeLocator:
        return FakeLocator(self, self.roles.get((role, name), []))

    def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[int] = None) -> FakeResponse:
        self.visits.append(url)
        if url in self.goto_errors:
            raise self.goto_errors[url]
        self.url = self.redirects.get(url, url)
        return FakeResponse(self.responses.get(url, 200))

    def title(self) -> str:
        return self.page_title

    def wait_for_url(self, predicate, timeout: Optional[int] = None) -> None:
        if not predicate(self.url):
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for URL")

    def evaluate(self, expression: str, arg: Any = None) -> None:
        self.evaluations.append((expression, arg))

    def screenshot(self, path: str, full_page: bool = False) -> None:
        if self.fail_screenshot:
            raise OSError("disk full")
        Path(path).write_bytes(b"\x89PNG")
        self.screenshots.append(path)


class FakeTracing:

    def __init__(self) -> None:
        self.started = False
        self.stops: List[Optional[str]] = []

    def start(self, **_kwargs: Any) -> None:
        self.started = True

    def stop(self, path: Optional[str] = None) -> None:
        self.stops.append(path)
        if path:
            Path(path).write_bytes(b"PK")


class FakeContext:

    def __init__(self) -> None:
        self.tracing = FakeTracing()


@pytest.fixture
def make_element():
    return FakeElement


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def browser_context() -> FakeContext:
    return FakeContext()


@pytest.fixture
def session_factory(page, browser_context):
    state = {"opened": 0, "closed": 0}

    @contextmanager
    def factory(_config):
        state["opened"] += 1
        try:
            yield BrowserSession(page=page, context=browser_context)
        finally:
            state["closed"] += 1

    factory.state = state
    return factory


@pytest.fixture
def repo(tmp_path):
    repository = open_repository(tmp_path / "autotester.sqlite")
    yield repository
    repository.close()


@pytest.fixture
def run_config(tmp_path) -> RunConfig:
    return RunConfig(
        env_name="test",
        step_timeout_ms=50,
        global_timeout_ms=50,
        reports_dir=tmp_path / "reports",
    )
