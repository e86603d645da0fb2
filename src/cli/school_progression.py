# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School progression batch command.

Runs the progression workflow against the directory database without
the HTTP API:

    school-progression init-db
    school-progression start 2025-2026
    school-progression status school_progression_2025-2026
    school-progression assign school_progression_2025-2026 s2 3B
    school-progression depart school_progression_2025-2026 s7 s8 --reason "Moving abroad"
    school-progression undepart school_progression_2025-2026 s7
    school-progression add-student school_progression_2025-2026 new_student.json
    school-progression apply school_progression_2025-2026 --dry-run

Exit codes: 0 success, 1 service or database error, 2 invalid input.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.domains.progression.service import (
    ProgressionServiceError,
    ProgressionValidationError,
    SchoolProgressionService,
)
from src.infrastructure.database.connection import (
    DatabaseError,
    close_database,
    create_schema,
    get_session,
    init_database,
)
from src.models.progression import (
    ApplyResultResponse,
    DepartingStudentItem,
    NewStudentRequest,
    ProgressionStatusResponse,
)
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2

_CHANGE_STYLES = {
    "advance_in_place": "green",
    "needs_reassignment": "yellow",
    "graduating": "cyan",
    "departing": "magenta",
    "invalid": "red",
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog="school-progression",
        description="Move the student roster into the next school year",
    )
    parser.add_argument(
        "--operator",
        default=None,
        help="Operator recorded on workflow rows (default: current OS user)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create missing database tables")

    start = subparsers.add_parser("start", help="Start the workflow for a school year")
    start.add_argument("year", help="School year, e.g. 2025-2026")

    status = subparsers.add_parser("status", help="Show the staged state of a workflow")
    status.add_argument("workflow_id")

    assign = subparsers.add_parser("assign", help="Assign the new class of a student")
    assign.add_argument("workflow_id")
    assign.add_argument("student_id")
    assign.add_argument("class_name")

    depart = subparsers.add_parser("depart", help="Mark students as departing")
    depart.add_argument("workflow_id")
    depart.add_argument("student_ids", nargs="+")
    depart.add_argument("--reason", default="", help="Departure reason")

    undepart = subparsers.add_parser("undepart", help="Unmark a departing student")
    undepart.add_argument("workflow_id")
    undepart.add_argument("student_id")

    add_student = subparsers.add_parser("add-student", help="Stage a new student from a JSON file")
    add_student.add_argument("workflow_id")
    add_student.add_argument("file", type=Path, help="JSON with student, parent1 and optional parent2")

    apply = subparsers.add_parser("apply", help="Apply the staged changes")
    apply.add_argument("workflow_id")
    apply.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without writing anything",
    )

    return parser


def render_status(console: Console, status: ProgressionStatusResponse) -> None:
    """Print a workflow with its staged rows."""
    workflow = status.workflow
    console.print(Panel.fit(
        f"[bold cyan]{workflow.id}[/bold cyan]\n"
        f"Year: [yellow]{workflow.school_year}[/yellow] | "
        f"Status: [green]{workflow.status.value}[/green] | Phase: {workflow.phase}\n"
        f"Started by {workflow.started_by} at {workflow.started_at:%Y-%m-%d %H:%M}",
        border_style="blue",
    ))

    changes = Table(title="Changes")
    changes.add_column("Student", style="cyan")
    changes.add_column("Name")
    changes.add_column("Level", justify="right")
    changes.add_column("Class")
    changes.add_column("New level", justify="right")
    changes.add_column("New class")
    changes.add_column("Outcome")
    for change in status.changes:
        style = _CHANGE_STYLES.get(change.change_type.value, "white")
        changes.add_row(
            change.student_id,
            change.student_name,
            str(change.current_level),
            change.current_class or "-",
            str(change.new_level) if change.new_level is not None else "-",
            change.new_class or "-",
            f"[{style}]{change.change_type.value}[/{style}]",
        )
    console.print(changes)

    if status.assignments:
        assignments = Table(title="Class assignments")
        assignments.add_column("Student", style="cyan")
        assignments.add_column("New level", justify="right")
        assignments.add_column("Assigned class")
        for assignment in status.assignments:
            assigned = assignment.assigned_class if assignment.assigned else "[red]unassigned[/red]"
            assignments.add_row(assignment.student_id, str(assignment.new_level), assigned)
        console.print(assignments)

    if status.departing:
        departing = Table(title="Departing")
        departing.add_column("Student", style="cyan")
        departing.add_column("Name")
        departing.add_column("Reason")
        for row in status.departing:
            departing.add_row(row.student_id, row.student_name, row.departure_reason or "-")
        console.print(departing)

    if status.new_students:
        new_students = Table(title="New students")
        new_students.add_column("Entry", style="cyan")
        new_students.add_column("Name")
        new_students.add_column("Class")
        new_students.add_column("Parents")
        for entry in status.new_students:
            student = entry.student
            new_students.add_row(
                entry.id,
                f"{student.get('first_name', '')} {student.get('last_name', '')}".strip(),
                student.get("class_name") or "-",
                ", ".join(student.get("parent_emails", [])),
            )
        console.print(new_students)


def render_apply_result(console: Console, result: ApplyResultResponse) -> None:
    """Print apply stats."""
    title = "Dry run (nothing written)" if result.dry_run else "Applied changes"
    table = Table(title=f"{title}: {result.workflow_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    for name, value in result.stats.model_dump().items():
        table.add_row(name, str(value))
    table.add_row("operations", str(result.operation_count))
    console.print(table)

    if result.stats.skipped_unassigned:
        console.print(
            f"[yellow]{result.stats.skipped_unassigned} students without an assigned class "
            f"were left unchanged[/yellow]"
        )
    if result.stats.orphan_lookup_failures:
        console.print(
            f"[yellow]{result.stats.orphan_lookup_failures} parent lookups failed; "
            f"their orphaned parents were kept[/yellow]"
        )


async def run_command(
    args: argparse.Namespace,
    session: AsyncSession,
    console: Console,
) -> int:
    """Run one parsed subcommand against a session.

    Returns:
        Process exit code.
    """
    service = SchoolProgressionService(session, settings=get_settings().progression)
    operator = args.operator or getpass.getuser()

    if args.command == "start":
        started = await service.start_workflow(year=args.year, started_by=operator)
        console.print(f"[green]Started {started.workflow_id}[/green]")
        for name, value in started.stats.items():
            console.print(f"  {name}: {value}")

    elif args.command == "status":
        render_status(console, await service.get_status(args.workflow_id))

    elif args.command == "assign":
        assignment = await service.assign_class(
            workflow_id=args.workflow_id,
            student_id=args.student_id,
            class_name=args.class_name,
            assigned_by=operator,
        )
        console.print(
            f"[green]Assigned {assignment.student_id} to {assignment.assigned_class}[/green]"
        )

    elif args.command == "depart":
        rows = await service.mark_departing(
            workflow_id=args.workflow_id,
            students=[
                DepartingStudentItem(student_id=student_id, reason=args.reason)
                for student_id in args.student_ids
            ],
            marked_by=operator,
        )
        console.print(f"[green]Marked {len(rows)} students as departing[/green]")

    elif args.command == "undepart":
        change = await service.unmark_departing(args.workflow_id, args.student_id)
        console.print(
            f"[green]Restored {change.student_id} to {change.change_type.value}[/green]"
        )

    elif args.command == "add-student":
        try:
            request = NewStudentRequest.model_validate_json(args.file.read_text(encoding="utf-8"))
        except ValidationError as e:
            console.print(f"[red]Invalid new student file {args.file}:[/red]")
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"])
                console.print(f"  {location}: {error['msg']}")
            return EXIT_INVALID
        entry = await service.add_new_student(args.workflow_id, request, added_by=operator)
        console.print(f"[green]Staged new student {entry.id}[/green]")

    elif args.command == "apply":
        result = await service.apply_workflow(args.workflow_id, dry_run=args.dry_run)
        render_apply_result(console, result)
        if args.dry_run:
            console.print("[dim]Run without --dry-run to apply these changes[/dim]")

    return EXIT_OK


async def _main(args: argparse.Namespace, console: Console) -> int:
    settings = get_settings()
    await init_database(settings)
    try:
        if args.command == "init-db":
            await create_schema()
            console.print("[green]Database schema is up to date[/green]")
            return EXIT_OK

        async with get_session() as session:
            return await run_command(args, session, console)
    finally:
        await close_database()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the ``school-progression`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    console = Console()
    setup_logging(get_settings())

    try:
        return asyncio.run(_main(args, console))
    except ProgressionValidationError as e:
        console.print(f"[red]Invalid {e.field}: {e}[/red]")
        return EXIT_INVALID
    except OSError as e:
        console.print(f"[red]{e}[/red]")
        return EXIT_INVALID
    except ProgressionServiceError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/red]")
        return EXIT_ERROR
    except (DatabaseError, SQLAlchemyError) as e:
        logger.error("Database error: %s", str(e))
        console.print(f"[red]Database error: {e}[/red]")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
