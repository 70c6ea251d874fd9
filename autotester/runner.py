"""Run controller: replays a stored macro step by step inside one browser session."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, ContextManager, Iterator, List, Optional

from playwright.sync_api import sync_playwright

from .errors import ArtifactCaptureError, ConfigurationError, InitialNavigationError, NavigationFailed
from .models import (
    ACTION_TYPES,
    FAIL,
    PASS,
    SKIPPED,
    STOP_ON_FAIL_MESSAGE,
    Artifact,
    Macro,
    RunConfig,
    RunResult,
    RunSummary,
    Step,
    StepOutcome,
    StepResult,
)
from .report import assemble_report, report_path_for, write_report
from .step_executor import StepExecutor, Timeouts, navigate, validate_step_value
from .storage import MacroRepository

LOGGER = logging.getLogger("autotester.runner")


@dataclass
class BrowserSession:
    """The page and its browser context for one run."""

    page: Any
    context: Any


SessionFactory = Callable[[RunConfig], ContextManager[BrowserSession]]


@contextmanager
def playwright_session(config: RunConfig) -> Iterator[BrowserSession]:
    with sync_playwright() as playwright:
        launcher = getattr(playwright, config.browser)
        browser = launcher.launch(headless=config.headless)
        context = browser.new_context()
        page = context.new_page()
        try:
            yield BrowserSession(page=page, context=context)
        finally:
            context.close()
            browser.close()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunController:
    """Iterates a macro's steps, applying enable filtering and stop-on-fail."""

    def __init__(
        self,
        repository: MacroRepository,
        config: RunConfig,
        executor: Optional[StepExecutor] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.repository = repository
        self.config = config
        self.executor = executor or StepExecutor()
        self.session_factory = session_factory or playwright_session
        self.logger = LOGGER
        self._tracing_active = False

    def run(self, macro_id: int) -> RunResult:
        """Replay the macro and return the finished run.

        Raises:
            ConfigurationError: the macro is missing, empty, or malformed.
            InitialNavigationError: the base URL could not be opened.
        """
        macro = self.repository.get_macro(macro_id)
        if macro is None:
            raise ConfigurationError(f"Macro {macro_id} not found")
        steps = self.repository.get_all_steps(macro_id)
        if not steps:
            raise ConfigurationError(f"No steps found for macro {macro_id}")
        self._preflight(steps)

        base_url = self.config.base_url or macro.base_url
        reports_dir = Path(self.config.reports_dir)
        reports_dir.mkdir(parents=True, exist_ok=True)

        with self.session_factory(self.config) as session:
            self._start_tracing(session)
            try:
                if base_url:
                    self._initial_navigation(session.page, base_url)
                result = self._run_steps(session, macro, steps, base_url, reports_dir)
            finally:
                if self._tracing_active:
                    self._stop_tracing(session, None)

        return result

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    def _run_steps(
        self,
        session: BrowserSession,
        macro: Macro,
        steps: List[Step],
        base_url: Optional[str],
        reports_dir: Path,
    ) -> RunResult:
        run_id = self.repository.create_run(macro.id, self.config.env_name, self.config.browser, self.config.headless)
        log_path = reports_dir / f"run-{run_id}.log"
        log_handler = self._attach_run_logger(log_path)
        result = RunResult(
            run_id=run_id,
            macro=macro,
            config=self.config,
            status=PASS,
            started_at=_now(),
            summary=RunSummary(total=len(steps)),
        )
        self.logger.info("Run %s started: macro %s (%s) on %s/%s", run_id, macro.id, macro.name,
                         self.config.env_name, self.config.browser)

        try:
            self._iterate(session.page, steps, base_url, reports_dir, result)
            result.status = FAIL if result.summary.failed else PASS
            failure = result.first_failure
            if failure is not None:
                self.logger.error("Run %s failed at step %s (%s): %s", run_id, failure.step.order_index,
                                  failure.step.action_type, failure.error_message)

            if self._tracing_active:
                trace_target = reports_dir / f"run-{run_id}.zip" if result.status == FAIL else None
                trace_path = self._stop_tracing(session, trace_target)
                if trace_path:
                    result.summary.trace_path = trace_path
                    self._add_artifact(result, "trace", trace_path)
        except Exception:
            self.logger.exception("Run %s crashed with unexpected error", run_id)
            result.status = FAIL
            self.repository.finish_run(run_id, FAIL, result.summary)
            raise
        finally:
            result.finished_at = _now()
            self._detach_run_logger(log_handler)

        self._add_artifact(result, "log", str(log_path))
        self.repository.finish_run(run_id, result.status, result.summary)

        report_path = report_path_for(reports_dir, run_id)
        write_report(assemble_report(result, steps), report_path)
        result.report_path = str(report_path)

        self.logger.info("Run %s finished with status %s. Report: %s", run_id, result.status, report_path)
        return result

    def _iterate(self, page, steps: List[Step], base_url: Optional[str], reports_dir: Path, result: RunResult) -> None:
        for position, step in enumerate(steps):
            started_at = _now()
            if not step.enabled:
                self._record(result, step, StepOutcome.skipped(), started_at)
                continue

            self.logger.info("Step %s: %s", step.order_index, step.action_type)
            outcome = self.executor.execute(step, page, base_url, Timeouts.for_step(self.config, step))

            if outcome.status != FAIL:
                if outcome.status == SKIPPED:
                    self.logger.warning("Step %s skipped: %s", step.order_index, outcome.error_message)
                self._record(result, step, outcome, started_at)
                continue

            self.logger.warning("Step %s failed: %s", step.order_index, outcome.error_message)
            screenshot = self._capture_screenshot(page, reports_dir / f"run-{result.run_id}-step-{step.order_index}.png")
            self._record(result, step, outcome, started_at, screenshot_path=screenshot)
            if screenshot:
                self._add_artifact(result, "screenshot", screenshot)

            if self.config.stop_on_fail:
                for rest in steps[position + 1:]:
                    message = STOP_ON_FAIL_MESSAGE if rest.enabled else None
                    self._record(result, rest, StepOutcome.skipped(message), _now())
                break

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    def _record(
        self,
        result: RunResult,
        step: Step,
        outcome: StepOutcome,
        started_at: datetime,
        screenshot_path: Optional[str] = None,
    ) -> None:
        finished_at = _now()
        step_result = StepResult(
            step=step,
            status=outcome.status,
            started_at=started_at,
            finished_at=finished_at,
            error_message=outcome.error_message,
            used_locator=outcome.used_locator,
            screenshot_path=screenshot_path,
        )
        result.steps.append(step_result)
        result.summary.record(outcome.status)
        self.repository.add_step_result(
            run_id=result.run_id,
            step_id=step.id,
            status=outcome.status,
            started_at=started_at.isoformat(),
            finished_at=finished_at.isoformat(),
            error_message=outcome.error_message,
            used_locator=outcome.used_locator,
            screenshot_path=screenshot_path,
        )

    def _preflight(self, steps: List[Step]) -> None:
        seen = set()
        for step in steps:
            if step.order_index in seen:
                raise ConfigurationError(f"Duplicate order_index {step.order_index}")
            seen.add(step.order_index)
            # Disabled steps are recorded SKIPPED without running.
            if step.enabled and step.action_type in ACTION_TYPES:
                validate_step_value(step)

    def _initial_navigation(self, page, base_url: str) -> None:
        self.logger.info("Navigating to base URL %s", base_url)
        try:
            navigate(page, base_url, self.config.global_timeout_ms, self.config.wait_until)
        except NavigationFailed as exc:
            raise InitialNavigationError(str(exc)) from exc

    def _add_artifact(self, result: RunResult, artifact_type: str, storage_url: str) -> None:
        self.repository.add_artifact(result.run_id, artifact_type, storage_url)
        result.artifacts.append(Artifact(run_id=result.run_id, type=artifact_type, storage_url=storage_url))

    def _capture_screenshot(self, page, path: Path) -> Optional[str]:
        try:
            page.screenshot(path=str(path), full_page=True)
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("%s", ArtifactCaptureError(f"Screenshot capture failed: {exc}"))
            return None
        return str(path)

    def _start_tracing(self, session: BrowserSession) -> None:
        try:
            session.context.tracing.start(screenshots=True, snapshots=True, sources=True)
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("Trace recording unavailable: %s", exc)
            return
        self._tracing_active = True

    def _stop_tracing(self, session: BrowserSession, path: Optional[Path]) -> Optional[str]:
        self._tracing_active = False
        try:
            if path is None:
                session.context.tracing.stop()
                return None
            session.context.tracing.stop(path=str(path))
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("%s", ArtifactCaptureError(f"Trace capture failed: {exc}"))
            return None
        return str(path)

    def _attach_run_logger(self, log_path: Path) -> Optional[logging.Handler]:
        try:
            handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError as exc:
            self.logger.error("Cannot open run log %s: %s", log_path, exc)
            return None
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        logging.getLogger("autotester").addHandler(handler)
        return handler

    @staticmethod
    def _detach_run_logger(handler: Optional[logging.Handler]) -> None:
        if handler:
            logging.getLogger("autotester").removeHandler(handler)
            handler.close()
