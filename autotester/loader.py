"""Helpers for loading recorded macro documents."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from .errors import ConfigurationError
from .locators import parse_locators
from .models import ACTION_TYPES, NewStep
from .step_executor import validate_step_value

MACRO_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["steps"],
    "properties": {
        "name": {"type": "string"},
        "description": {"type": ["string", "null"]},
        "baseUrl": {"type": ["string", "null"]},
        "steps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["actionType"],
                "properties": {
                    "orderIndex": {"type": "integer", "minimum": 1},
                    "actionType": {"enum": list(ACTION_TYPES)},
                    "locators": {"type": "array"},
                    "value": {"type": ["string", "null"]},
                    "timeouts": {
                        "type": ["object", "null"],
                        "properties": {"step": {"type": "integer", "exclusiveMinimum": 0}},
                    },
                },
            },
        },
    },
}

_VALIDATOR = Draft7Validator(MACRO_SCHEMA)


@dataclass
class MacroDocument:
    """A macro as produced by the recorder, ready to be stored."""

    name: str
    steps: List[NewStep] = field(default_factory=list)
    description: Optional[str] = None
    base_url: Optional[str] = None


def _ensure_path(source: Any) -> Path:
    if isinstance(source, (str, Path)):
        return Path(source)
    raise TypeError(f"Unsupported path type: {type(source)!r}")


def load_json(source: Any) -> Dict[str, Any]:
    path = _ensure_path(source)
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def parse_macro_document(raw: Any, default_name: str = "Untitled macro") -> MacroDocument:
    errors = sorted(_VALIDATOR.iter_errors(raw), key=lambda e: list(e.path))
    if errors:
        messages = []
        for error in errors:
            path = "->".join(str(part) for part in error.path)
            messages.append(f"at `{path}` {error.message}" if path else error.message)
        raise ConfigurationError("Invalid macro document: " + "; ".join(messages))

    steps: List[NewStep] = []
    seen = set()
    for position, raw_step in enumerate(raw["steps"], start=1):
        order_index = raw_step.get("orderIndex", position)
        if order_index in seen:
            raise ConfigurationError(f"Duplicate orderIndex {order_index}")
        seen.add(order_index)
        try:
            locators = parse_locators(raw_step.get("locators") or [])
        except ConfigurationError as exc:
            raise ConfigurationError(f"Step {order_index}: {exc}") from exc
        timeouts = raw_step.get("timeouts") or {}
        step = NewStep(
            order_index=order_index,
            action_type=raw_step["actionType"],
            locators=locators,
            value=raw_step.get("value"),
            timeout_ms=timeouts.get("step"),
        )
        validate_step_value(step)
        steps.append(step)

    name = (raw.get("name") or "").strip() or default_name
    return MacroDocument(
        name=name,
        steps=sorted(steps, key=lambda step: step.order_index),
        description=raw.get("description"),
        base_url=raw.get("baseUrl"),
    )


def load_macro_document(source: Any, default_name: str = "Untitled macro") -> MacroDocument:
    try:
        raw = load_json(source)
    except ValueError as exc:
        raise ConfigurationError(f"Macro document {source} is not valid JSON: {exc}") from exc
    return parse_macro_document(raw, default_name=default_name)
