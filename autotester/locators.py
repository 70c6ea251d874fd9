"""Locator validation and the priority-ordered resolution cascade."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .errors import ConfigurationError, ElementNotInteractable, LocatorNotFound
from .models import LOCATOR_TYPES, Locator

LOGGER = logging.getLogger("autotester.locators")


@dataclass
class ResolvedElement:
    """A live element handle plus the candidate that produced it."""

    handle: Any
    used: Locator


def parse_locator(raw: Any) -> Locator:
    """Validate one untrusted locator payload and build a ``Locator``.

    Raises:
        ConfigurationError: if the discriminant or the shape is invalid.
    """
    if isinstance(raw, Locator):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Locator must be an object, got {type(raw).__name__}")

    kind = raw.get("type")
    if kind not in LOCATOR_TYPES:
        raise ConfigurationError(f"Unknown locator type: {kind!r}")

    if kind == "role":
        role = raw.get("role")
        if not isinstance(role, str) or not role.strip():
            raise ConfigurationError("role locator requires a non-empty 'role'")
        name = raw.get("name")
        if name is not None and not isinstance(name, str):
            raise ConfigurationError("role locator 'name' must be a string")
        return Locator(type="role", role=role.strip(), name=name or None)

    value = raw.get("value")
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{kind} locator requires a non-empty 'value'")
    return Locator(type=kind, value=value)


def parse_locators(raw: Optional[Iterable[Any]]) -> List[Locator]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes, dict)):
        raise ConfigurationError("Locators must be a list")
    return [parse_locator(item) for item in raw]


def to_native(page, locator: Locator):
    """Translate a locator into a Playwright query against ``page``."""
    if locator.type in ("data", "css"):
        return page.locator(locator.value)
    if locator.type == "xpath":
        return page.locator(f"xpath={locator.value}")
    if locator.type == "role":
        if locator.name:
            return page.get_by_role(locator.role, name=locator.name)
        return page.get_by_role(locator.role)
    raise ConfigurationError(f"Unknown locator type: {locator.type!r}")


def resolve(page, candidates: List[Locator]) -> ResolvedElement:
    """Return the first candidate, in stored order, that matches at least one element.

    When several elements match, the first in document order is used.
    Candidates that match nothing or whose query raises are skipped.

    Raises:
        LocatorNotFound: if no candidate matches.
    """
    if not candidates:
        raise LocatorNotFound("Locator not found: step has no locator candidates")

    for candidate in candidates:
        try:
            query = to_native(page, candidate)
            count = query.count()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.debug("Locator %s raised during query: %s", candidate.describe(), exc)
            continue
        if count > 0:
            LOGGER.debug("Locator %s matched %d element(s)", candidate.describe(), count)
            return ResolvedElement(handle=query.first, used=candidate)
        LOGGER.debug("Locator %s matched nothing", candidate.describe())

    tried = ", ".join(candidate.describe() for candidate in candidates)
    raise LocatorNotFound(f"Locator not found (tried {tried})")


def ensure_interactable(handle, timeout_ms: int, require_enabled: bool = True) -> None:
    """Wait for the element to be visible and attached, then check it is enabled.

    Raises:
        ElementNotInteractable: on timeout or when the element is disabled.
    """
    try:
        handle.wait_for(state="visible", timeout=timeout_ms)
        handle.wait_for(state="attached", timeout=timeout_ms)
    except PlaywrightTimeoutError as exc:
        raise ElementNotInteractable(f"Element not visible within {timeout_ms}ms") from exc

    if require_enabled and not handle.is_enabled():
        raise ElementNotInteractable("Element is disabled")
