"""Data models for the macro replay engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

# Step statuses
PASS = "PASS"
FAIL = "FAIL"
SKIPPED = "SKIPPED"

# Run statuses
RUNNING = "RUNNING"

STOP_ON_FAIL_MESSAGE = "not executed (stop-on-fail)"
SECRET_SENTINEL = "__SECRET__"

ACTION_TYPES = (
    "click",
    "dblclick",
    "hover",
    "clickAt",
    "type",
    "select",
    "check",
    "uncheck",
    "navigation",
    "waitFor",
    "assert",
    "scrollTo",
    "assertCss",
    "assertCursor",
)

LOCATOR_TYPES = ("data", "role", "css", "xpath")
BROWSERS = ("chromium", "firefox", "webkit")
WAIT_UNTIL_STATES = ("commit", "domcontentloaded", "load", "networkidle")
ARTIFACT_TYPES = ("screenshot", "trace", "video", "log")


@dataclass(frozen=True)
class Locator:
    """One candidate strategy for finding an element.

    ``type`` is the discriminant: ``data``/``css``/``xpath`` carry ``value``,
    ``role`` carries ``role`` and an optional accessible ``name``.
    """

    type: str
    value: Optional[str] = None
    role: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.type == "role":
            payload: Dict[str, Any] = {"type": "role", "role": self.role}
            if self.name:
                payload["name"] = self.name
            return payload
        return {"type": self.type, "value": self.value}

    def describe(self) -> str:
        if self.type == "role":
            return f"role:{self.role}" + (f":{self.name}" if self.name else "")
        return f"{self.type}:{self.value}"


@dataclass
class Macro:
    id: int
    name: str
    base_url: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    created_by: Optional[str] = None


@dataclass
class Step:
    """A recorded step as stored for a macro."""

    id: int
    macro_id: int
    order_index: int
    action_type: str
    locators: List[Locator] = field(default_factory=list)
    value: Optional[str] = None
    timeout_ms: Optional[int] = None
    enabled: bool = True


@dataclass
class NewStep:
    """Step payload before it has been persisted."""

    order_index: int
    action_type: str
    locators: List[Locator] = field(default_factory=list)
    value: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass
# pylint: disable=too-many-instance-attributes
class RunConfig:
    """Effective configuration for one replay."""

    env_name: str = "dev"
    base_url: Optional[str] = None
    browser: str = "chromium"
    headless: bool = True
    step_timeout_ms: int = 5_000
    global_timeout_ms: int = 10_000
    wait_until: str = "domcontentloaded"
    stop_on_fail: bool = True
    reports_dir: Path = Path("reports")


@dataclass
class StepOutcome:
    """What the step executor reports back for one step."""

    status: str
    error_message: Optional[str] = None
    used_locator: Optional[Locator] = None
    error_kind: Optional[str] = None

    @classmethod
    def passed(cls, used_locator: Optional[Locator] = None) -> "StepOutcome":
        return cls(status=PASS, used_locator=used_locator)

    @classmethod
    def failed(cls, message: str, kind: Optional[str] = None) -> "StepOutcome":
        return cls(status=FAIL, error_message=message, error_kind=kind)

    @classmethod
    def skipped(cls, message: Optional[str] = None) -> "StepOutcome":
        return cls(status=SKIPPED, error_message=message)


@dataclass
class StepResult:
    """Captures outcome data for a single step within a run."""

    step: Step
    status: str
    started_at: datetime
    finished_at: datetime
    error_message: Optional[str] = None
    used_locator: Optional[Locator] = None
    screenshot_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step.id,
            "order_index": self.step.order_index,
            "action_type": self.step.action_type,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "error_message": self.error_message,
            "used_locator": self.used_locator.to_dict() if self.used_locator else None,
            "screenshot_path": self.screenshot_path,
        }


@dataclass
class RunSummary:
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    trace_path: Optional[str] = None

    def record(self, status: str) -> None:
        if status == PASS:
            self.passed += 1
        elif status == FAIL:
            self.failed += 1
        elif status == SKIPPED:
            self.skipped += 1
        else:
            raise ValueError(f"Unknown step status: {status}")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
        }
        if self.trace_path:
            payload["tracePath"] = self.trace_path
        return payload

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "RunSummary":
        raw = raw or {}
        return cls(
            total=int(raw.get("total", 0)),
            passed=int(raw.get("passed", 0)),
            failed=int(raw.get("failed", 0)),
            skipped=int(raw.get("skipped", 0)),
            trace_path=raw.get("tracePath"),
        )


@dataclass
class Artifact:
    run_id: int
    type: str
    storage_url: str


@dataclass
# pylint: disable=too-many-instance-attributes
class RunResult:
    """Aggregated run outcome."""

    run_id: int
    macro: Macro
    config: RunConfig
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    summary: RunSummary = field(default_factory=RunSummary)
    steps: List[StepResult] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    report_path: Optional[str] = None

    @property
    def first_failure(self) -> Optional[StepResult]:
        for result in self.steps:
            if result.status == FAIL:
                return result
        return None
