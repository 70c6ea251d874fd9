"""Report assembly: one canonical JSON-shaped record per run."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError
from .models import FAIL, PASS, SKIPPED, RunResult, RunSummary, Step

LOGGER = logging.getLogger("autotester.report")


def _step_entry(step: Step, result: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    result = result or {}
    return {
        "step_id": step.id,
        "order_index": step.order_index,
        "action_type": step.action_type,
        "locators": [locator.to_dict() for locator in step.locators],
        "value": step.value,
        "enabled": step.enabled,
        "timeout_ms": step.timeout_ms,
        "status": result.get("status", "UNKNOWN"),
        "error_message": result.get("error_message"),
        "used_locator": result.get("used_locator"),
        "screenshot_path": result.get("screenshot_path"),
        "started_at": result.get("started_at"),
        "finished_at": result.get("finished_at"),
    }


def derive_summary(step_entries: List[Dict[str, Any]], trace_path: Optional[str] = None) -> RunSummary:
    """Recompute the aggregate counters from per-step entries."""
    summary = RunSummary(total=len(step_entries), trace_path=trace_path)
    for entry in step_entries:
        if entry["status"] in (PASS, FAIL, SKIPPED):
            summary.record(entry["status"])
    return summary


def assemble_report(result: RunResult, steps: List[Step]) -> Dict[str, Any]:
    """Build the report from a live run result and the macro's step list."""
    by_step_id = {step_result.step.id: step_result.to_dict() for step_result in result.steps}
    entries = [_step_entry(step, by_step_id.get(step.id)) for step in steps]
    return {
        "runId": result.run_id,
        "macroId": result.macro.id,
        "macroName": result.macro.name,
        "envName": result.config.env_name,
        "browser": result.config.browser,
        "headless": result.config.headless,
        "status": result.status,
        "startedAt": result.started_at.isoformat(),
        "finishedAt": result.finished_at.isoformat() if result.finished_at else None,
        "summary": result.summary.to_dict(),
        "steps": entries,
        "artifacts": [{"type": artifact.type, "storageUrl": artifact.storage_url} for artifact in result.artifacts],
    }


def assemble_from_store(repository, run_id: int) -> Dict[str, Any]:
    """Rebuild the report from persisted Run, StepResult and Step records only.

    Raises:
        ConfigurationError: if the run or its macro no longer exists.
    """
    run = repository.get_run(run_id)
    if run is None:
        raise ConfigurationError(f"Run {run_id} not found")
    macro = repository.get_macro(run["macro_id"])
    if macro is None:
        raise ConfigurationError(f"Macro {run['macro_id']} for run {run_id} not found")

    steps = repository.get_all_steps(macro.id)
    results = {row["step_id"]: row for row in repository.get_run_step_results(run_id)}
    # Steps added to the macro after this run have no result and are not part of it.
    entries = [_step_entry(step, results[step.id]) for step in steps if step.id in results]

    artifacts = repository.list_artifacts(run_id)
    trace_path = next((artifact.storage_url for artifact in artifacts if artifact.type == "trace"), None)
    summary = run["summary"] or derive_summary(entries, trace_path)

    return {
        "runId": run_id,
        "macroId": macro.id,
        "macroName": macro.name,
        "envName": run["env_name"],
        "browser": run["browser"],
        "headless": run["headless"],
        "status": run["status"],
        "startedAt": run["started_at"],
        "finishedAt": run["finished_at"],
        "summary": summary.to_dict(),
        "steps": entries,
        "artifacts": [{"type": artifact.type, "storageUrl": artifact.storage_url} for artifact in artifacts],
    }


def write_report(report: Dict[str, Any], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(report, handle, ensure_ascii=False, indent=2)
    LOGGER.debug("Report written to %s", path)
    return path


def load_report(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def report_path_for(reports_dir: Path, run_id: int) -> Path:
    return reports_dir / f"run-{run_id}.json"
