"""Command-line interface for the macro replay engine."""
from __future__ import annotations

import argparse
import logging
import os
import sqlite3
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from .config import REPORTS_ENV_VAR, CliOverrides, resolve_run_config
from .errors import AutotesterError, ConfigurationError, InitialNavigationError
from .loader import load_macro_document
from .models import BROWSERS, PASS, WAIT_UNTIL_STATES, Locator, NewStep
from .renderers import FORMATS, format_locator, render
from .report import assemble_from_store, load_report, report_path_for, write_report
from .runner import RunController
from .storage import open_repository

LOGGER = logging.getLogger("autotester.cli")

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_ERROR = 2


def _parse_bool(raw: str) -> bool:
    value = str(raw).strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got {raw!r}")


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}")
    return value


# pylint: disable=too-many-statements
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autotester", description="UI macro runner for browser tests")
    parser.add_argument("--db", help="SQLite database path (default: $AUTOTESTER_DB or ./autotester.sqlite)")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("db-init", help="Initialize the SQLite schema")
    sub.add_parser("db-ping", help="Check database connectivity")
    sub.add_parser("list", help="List macros")

    show = sub.add_parser("macro-show", help="Show macro steps")
    show.add_argument("--macro-id", type=_positive_int, required=True)

    imp = sub.add_parser("macro-import", help="Store a recorded macro JSON document")
    imp.add_argument("--file", required=True, help="Path to the recorded macro JSON")
    imp.add_argument("--name", help="Macro name (overrides the document's name)")

    rename = sub.add_parser("macro-rename", help="Rename a macro")
    rename.add_argument("--macro-id", type=_positive_int, required=True)
    rename.add_argument("--name", required=True)

    disable = sub.add_parser("macro-disable-step", help="Disable a macro step")
    disable.add_argument("--macro-id", type=_positive_int)
    target = disable.add_mutually_exclusive_group(required=True)
    target.add_argument("--order", type=_positive_int, help="Order index of the step")
    target.add_argument("--step-id", type=_positive_int, help="Step id")

    seed = sub.add_parser("macro-seed-ui", help="Create a UI smoke macro using data-testid selectors")
    seed.add_argument("--name", default="ui_smoke")
    seed.add_argument("--url", required=True, help="Base URL (profile page)")

    run = sub.add_parser("run", help="Replay a macro")
    run.add_argument("--macro-id", type=_positive_int, required=True)
    run.add_argument("--env", help="Environment name from the environments file (default: dev)")
    run.add_argument("--envs-file", help="Environments file (default: $AUTOTESTER_ENVS or ./envs.json)")
    run.add_argument("--base-url", help="Override the base URL")
    run.add_argument("--browser", choices=list(BROWSERS))
    run.add_argument("--headless", type=_parse_bool, help="Run headless (true/false)")
    run.add_argument("--headed", action="store_true", help="Run headed (alias for --headless false)")
    run.add_argument("--step-timeout-ms", type=_positive_int, help="Element wait timeout in milliseconds")
    run.add_argument("--timeout-ms", type=_positive_int, help="Navigation timeout in milliseconds")
    run.add_argument("--wait-until", choices=list(WAIT_UNTIL_STATES))
    run.add_argument("--stop-on-fail", type=_parse_bool, default=True, help="Stop on first failure (default true)")
    run.add_argument("--reports-dir", help="Directory for reports and artifacts (default: reports)")

    report = sub.add_parser("show-report", help="Show the report of a run")
    report.add_argument("--run-id", type=_positive_int, required=True)
    report.add_argument("--format", choices=list(FORMATS), default="text")
    report.add_argument("--reports-dir", help="Directory for reports and artifacts (default: reports)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    logging.getLogger("autotester").setLevel(logging.DEBUG if args.debug else logging.INFO)

    handlers = {
        "db-init": _cmd_db_init,
        "db-ping": _cmd_db_ping,
        "list": _cmd_list,
        "macro-show": _cmd_macro_show,
        "macro-import": _cmd_macro_import,
        "macro-rename": _cmd_macro_rename,
        "macro-disable-step": _cmd_disable_step,
        "macro-seed-ui": _cmd_seed_ui,
        "run": _cmd_run,
        "show-report": _cmd_show_report,
    }
    try:
        return handlers[args.command](args)
    except AutotesterError as exc:
        LOGGER.error("%s", exc)
        return EXIT_ERROR


def _reports_dir(raw: Optional[str]) -> Path:
    return Path(raw or os.getenv(REPORTS_ENV_VAR) or "reports")


def _cmd_db_init(args) -> int:
    repo = open_repository(args.db)
    repo.close()
    print("DB initialized.")
    return EXIT_OK


def _cmd_db_ping(args) -> int:
    try:
        repo = open_repository(args.db)
    except sqlite3.Error as exc:
        LOGGER.error("cannot open sqlite database: %s", exc)
        return EXIT_ERROR
    try:
        repo.ping()
    except sqlite3.Error as exc:
        LOGGER.error("cannot connect to sqlite: %s", exc)
        return EXIT_ERROR
    finally:
        repo.close()
    print("OK")
    return EXIT_OK


def _cmd_list(args) -> int:
    repo = open_repository(args.db)
    try:
        macros = repo.list_macros()
    finally:
        repo.close()
    if not macros:
        print("No macros found.")
        return EXIT_OK
    id_width = max(2, *(len(str(macro.id)) for macro in macros))
    name_width = max(4, *(len(macro.name) for macro in macros))
    print(f"{'ID'.ljust(id_width)}  {'NAME'.ljust(name_width)}")
    print(f"{'-' * id_width}  {'-' * name_width}")
    for macro in macros:
        print(f"{str(macro.id).ljust(id_width)}  {macro.name.ljust(name_width)}")
    return EXIT_OK


def _cmd_macro_show(args) -> int:
    repo = open_repository(args.db)
    try:
        steps = repo.get_all_steps(args.macro_id)
    finally:
        repo.close()
    if not steps:
        print("No steps found.")
        return EXIT_OK
    print("ORDER  EN  ACTION        LOCATORS                                  VALUE")
    print("-----  --  ------------  ----------------------------------------  -----")
    for step in steps:
        summary = " | ".join(format_locator(locator.to_dict()) for locator in step.locators[:2]) or "-"
        print(f"{str(step.order_index)[:5]:<5}  {int(step.enabled):<2}  {step.action_type[:12]:<12}  "
              f"{summary[:40]:<40}  {step.value or ''}")
    return EXIT_OK


def _cmd_macro_import(args) -> int:
    document = load_macro_document(args.file)
    name = (args.name or "").strip() or document.name
    repo = open_repository(args.db)
    try:
        macro_id = repo.create_macro(name, description=document.description, base_url=document.base_url)
        repo.add_steps(macro_id, document.steps)
    finally:
        repo.close()
    print(f"Imported macro {macro_id} ({name}) with {len(document.steps)} steps")
    return EXIT_OK


def _cmd_macro_rename(args) -> int:
    name = args.name.strip()
    if not name:
        raise ConfigurationError("Missing or invalid --name (must be non-empty)")
    repo = open_repository(args.db)
    try:
        renamed = repo.rename_macro(args.macro_id, name)
    finally:
        repo.close()
    if not renamed:
        LOGGER.error("Macro %s not found.", args.macro_id)
        return EXIT_ERROR
    print(f"Renamed macro {args.macro_id} to {name}")
    return EXIT_OK


def _cmd_disable_step(args) -> int:
    repo = open_repository(args.db)
    try:
        if args.step_id is not None:
            if args.macro_id is not None and not repo.is_step_in_macro(args.step_id, args.macro_id):
                LOGGER.error("step-id does not belong to the given macro-id")
                return EXIT_ERROR
            changes = repo.disable_step_by_id(args.step_id)
        else:
            if args.macro_id is None:
                raise ConfigurationError("--order requires --macro-id")
            changes = repo.disable_step_by_order(args.macro_id, args.order)
    finally:
        repo.close()
    if changes == 0:
        LOGGER.error("No steps updated.")
        return EXIT_ERROR
    print("Step disabled.")
    return EXIT_OK


def _cmd_seed_ui(args) -> int:
    name = args.name.strip()
    url = args.url.strip()
    if not name or not url:
        raise ConfigurationError("Missing --name or --url")

    def data(testid: str) -> list:
        return [Locator(type="data", value=f'[data-testid="{testid}"]')]

    plan = [
        ("hover", "profile-link", None),
        ("assertCursor", "profile-link", "pointer"),
        ("click", "profile-link", None),
        ("hover", "theme-toggle", None),
        ("click", "theme-toggle", None),
        ("hover", "continue-btn", None),
        ("assertCursor", "continue-btn", "pointer"),
        ("click", "continue-btn", None),
    ]
    steps = [
        NewStep(order_index=index, action_type=action, locators=data(testid), value=value)
        for index, (action, testid, value) in enumerate(plan, start=1)
    ]
    repo = open_repository(args.db)
    try:
        macro_id = repo.create_macro(name, base_url=url)
        repo.add_steps(macro_id, steps)
    finally:
        repo.close()
    print(f"Seeded UI macro {macro_id} ({name})")
    return EXIT_OK


def _cmd_run(args) -> int:
    headless = False if args.headed else args.headless
    overrides = CliOverrides(
        base_url=args.base_url,
        browser=args.browser,
        headless=headless,
        step_timeout_ms=args.step_timeout_ms,
        global_timeout_ms=args.timeout_ms,
        wait_until=args.wait_until,
        stop_on_fail=args.stop_on_fail,
        reports_dir=Path(args.reports_dir) if args.reports_dir else None,
    )
    config = resolve_run_config(args.env, overrides, Path(args.envs_file) if args.envs_file else None)

    repo = open_repository(args.db)
    try:
        result = RunController(repo, config).run(args.macro_id)
    except InitialNavigationError as exc:
        LOGGER.error("Initial navigation failed: %s", exc)
        return EXIT_ERROR
    finally:
        repo.close()

    print(f"Run {result.run_id} finished with status {result.status}. Report: {result.report_path}")
    return EXIT_OK if result.status == PASS else EXIT_RUN_FAILED


def _cmd_show_report(args) -> int:
    reports_dir = _reports_dir(args.reports_dir)
    report_path = report_path_for(reports_dir, args.run_id)
    if report_path.exists():
        report = load_report(report_path)
    else:
        LOGGER.info("Report %s not found, rebuilding it from the database", report_path)
        repo = open_repository(args.db)
        try:
            report = assemble_from_store(repo, args.run_id)
        finally:
            repo.close()
        write_report(report, report_path)

    output = render(report, args.format)
    if args.format in ("html", "junit"):
        suffix = ".html" if args.format == "html" else ".xml"
        target = report_path.with_suffix(suffix)
        target.write_text(output, encoding="utf-8")
        label = "HTML" if args.format == "html" else "JUnit"
        print(f"{label} report: {target}")
        return EXIT_OK

    print(output)
    if args.format == "text":
        print(f"Report file: {report_path}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
