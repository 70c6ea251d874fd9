"""Renderers for the canonical run report: text, HTML and JUnit XML."""
from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

from jinja2 import Environment, BaseLoader

from .models import FAIL, SKIPPED

FORMATS = ("text", "json", "html", "junit")

HTML_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>AutoTester Report {{ report.runId }}</title>
  <style>
    body { font-family: Arial, sans-serif; margin: 24px; color: #111; }
    h1 { margin: 0 0 8px; }
    .meta { margin: 0 0 16px; color: #555; }
    table { width: 100%; border-collapse: collapse; }
    th, td { border: 1px solid #ddd; padding: 8px; vertical-align: top; }
    th { background: #f3f3f3; text-align: left; }
    .status-pass { color: #0a7b34; font-weight: 600; }
    .status-fail { color: #b00020; font-weight: 600; }
    .status-skipped { color: #8a6d3b; font-weight: 600; }
  </style>
</head>
<body>
  <h1>Run {{ report.runId }} - {{ report.status }}</h1>
  <p class="meta">Macro: {{ report.macroName or report.macroId }} | Env: {{ report.envName }} | Browser: {{ report.browser }} ({{ headless_label }})</p>
  <p class="meta">Summary: total={{ summary.total }}, passed={{ summary.passed }}, failed={{ summary.failed }}, skipped={{ summary.skipped }}{% if summary.tracePath %} | Trace: {{ summary.tracePath }}{% endif %}</p>
  <table>
    <thead>
      <tr>
        <th>Order</th>
        <th>Action</th>
        <th>Locators</th>
        <th>Value</th>
        <th>Status</th>
        <th>Error</th>
        <th>Screenshot</th>
      </tr>
    </thead>
    <tbody>
{%- for step in report.steps %}
      <tr>
        <td>{{ step.order_index }}</td>
        <td>{{ step.action_type }}</td>
        <td>{{ step.locators | locator_list }}</td>
        <td>{{ step.value or "" }}</td>
        <td class="status-{{ step.status | lower }}">{{ step.status }}</td>
        <td>{{ step.error_message or "" }}</td>
        <td>{% if step.screenshot_path %}<a href="{{ step.screenshot_path }}">screenshot</a>{% endif %}</td>
      </tr>
{%- endfor %}
    </tbody>
  </table>
</body>
</html>
"""


def format_locator(locator: Dict[str, Any]) -> str:
    if locator.get("type") == "role":
        name = locator.get("name")
        return f"role:{locator.get('role')}" + (f":{name}" if name else "")
    return f"{locator.get('type')}:{locator.get('value', '')}"


def format_locator_list(locators: Optional[List[Dict[str, Any]]]) -> str:
    if not locators:
        return "-"
    return " | ".join(format_locator(locator) for locator in locators)


def _headless_label(report: Dict[str, Any]) -> str:
    headless = report.get("headless")
    if headless is None:
        return "unknown"
    return "headless" if headless else "headed"


def render_text(report: Dict[str, Any]) -> str:
    summary = report.get("summary") or {}
    lines = [f"Run {report.get('runId')} status: {report.get('status')}"]
    lines.append(f"Summary: total={summary.get('total', 0)}, passed={summary.get('passed', 0)}, "
                 f"failed={summary.get('failed', 0)}, skipped={summary.get('skipped', 0)}")
    if summary.get("tracePath"):
        lines.append(f"Trace: {summary['tracePath']}")
    for step in report.get("steps", []):
        line = f"  [{step.get('status'):<7}] {step.get('order_index'):>3} {step.get('action_type')}"
        if step.get("error_message"):
            line += f" - {step['error_message']}"
        lines.append(line)
    return "\n".join(lines)


def render_json(report: Dict[str, Any]) -> str:
    return json.dumps(report, ensure_ascii=False, indent=2)


def render_html(report: Dict[str, Any]) -> str:
    env = Environment(loader=BaseLoader(), autoescape=True)
    env.filters["locator_list"] = format_locator_list
    template = env.from_string(HTML_TEMPLATE)
    return template.render(report=report, summary=report.get("summary") or {}, headless_label=_headless_label(report))


def render_junit(report: Dict[str, Any]) -> str:
    """One testcase per step named ``step-<order>-<action>``."""
    steps = report.get("steps", [])
    summary = report.get("summary") or {}
    macro_label = str(report.get("macroName") or f"macro-{report.get('macroId')}")
    suite_name = "__".join(
        [macro_label, str(report.get("envName") or "unknown"), str(report.get("browser") or "unknown"),
         _headless_label(report)])

    suite = ET.Element(
        "testsuite",
        {
            "name": suite_name,
            "tests": str(summary.get("total", len(steps))),
            "failures": str(summary.get("failed", 0)),
            "skipped": str(summary.get("skipped", 0)),
        },
    )
    for step in steps:
        case = ET.SubElement(suite, "testcase", {"name": f"step-{step.get('order_index')}-{step.get('action_type')}"})
        if step.get("status") == FAIL:
            ET.SubElement(case, "failure", {"message": step.get("error_message") or "failure"})
        elif step.get("status") == SKIPPED:
            ET.SubElement(case, "skipped")
    ET.indent(suite, space="  ")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(suite, encoding="unicode") + "\n"


def render(report: Dict[str, Any], fmt: str) -> str:
    renderers = {
        "text": render_text,
        "json": render_json,
        "html": render_html,
        "junit": render_junit,
    }
    if fmt not in renderers:
        raise ValueError(f"Unsupported report format: {fmt}")
    return renderers[fmt](report)
