from __future__ import annotations

import json

import pytest

from autotester.errors import ConfigurationError
from autotester.loader import load_macro_document, parse_macro_document
from autotester.models import Locator


def test_parse_document_assigns_positions_and_sorts():
    document = parse_macro_document({
        "name": "  Sign in ",
        "baseUrl": "https://app.example.com",
        "steps": [
            {"actionType": "navigation", "value": "/login"},
            {"actionType": "click", "locators": [{"type": "role", "role": "button", "name": "Sign in"}],
             "timeouts": {"step": 800}},
        ],
    })

    assert document.name == "Sign in"
    assert document.base_url == "https://app.example.com"
    assert [(step.order_index, step.action_type) for step in document.steps] == [(1, "navigation"), (2, "click")]
    assert document.steps[1].locators == [Locator(type="role", role="button", name="Sign in")]
    assert document.steps[1].timeout_ms == 800


def test_explicit_order_index_is_respected():
    document = parse_macro_document({
        "steps": [
            {"orderIndex": 5, "actionType": "hover", "locators": [{"type": "css", "value": ".b"}]},
            {"orderIndex": 3, "actionType": "click", "locators": [{"type": "css", "value": ".a"}]},
        ],
    }, default_name="recorded")

    assert document.name == "recorded"
    assert [step.order_index for step in document.steps] == [3, 5]


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"steps": []}, "steps"),
        ({"steps": [{"actionType": "drag"}]}, "steps->0->actionType"),
        ({"steps": [{"actionType": "click", "orderIndex": 0}]}, "orderIndex"),
        ({"steps": [{"actionType": "click", "orderIndex": 1}, {"actionType": "hover", "orderIndex": 1}]},
         "Duplicate orderIndex 1"),
        ({"steps": [{"actionType": "click", "locators": [{"type": "id", "value": "x"}]}]}, "Step 1"),
        ({"steps": [{"actionType": "clickAt", "value": "center"}]}, "Step 1 \\(clickAt\\)"),
        ({"steps": [{"actionType": "scrollTo", "value": "down"}]}, "Step 1 \\(scrollTo\\)"),
        ({"steps": [{"actionType": "assertCss", "value": "color"}]}, "Step 1 \\(assertCss\\)"),
    ],
)
def test_invalid_documents_are_rejected(raw, message):
    with pytest.raises(ConfigurationError, match=message):
        parse_macro_document(raw)


def test_load_document_from_file(tmp_path):
    path = tmp_path / "macro.json"
    path.write_text(json.dumps({"steps": [{"actionType": "assert", "value": "url:/home"}]}), encoding="utf-8")

    document = load_macro_document(path, default_name="macro")

    assert document.name == "macro"
    assert document.steps[0].value == "url:/home"


def test_load_document_rejects_bad_json(tmp_path):
    path = tmp_path / "macro.json"
    path.write_text("[1, 2", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="not valid JSON"):
        load_macro_document(path)
