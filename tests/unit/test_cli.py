# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the school-progression command."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from rich.console import Console

from src.cli.school_progression import (
    EXIT_INVALID,
    EXIT_OK,
    build_parser,
    render_apply_result,
    run_command,
)
from src.models.progression import ApplyResultResponse, ApplyStats


class TestParser:
    """Tests for argument parsing."""

    def test_depart_collects_students_and_reason(self) -> None:
        args = build_parser().parse_args(
            ["depart", "wf", "s7", "s8", "--reason", "Moving abroad"]
        )

        assert args.command == "depart"
        assert args.student_ids == ["s7", "s8"]
        assert args.reason == "Moving abroad"

    def test_apply_dry_run_flag(self) -> None:
        parser = build_parser()

        assert parser.parse_args(["apply", "wf", "--dry-run"]).dry_run is True
        assert parser.parse_args(["apply", "wf"]).dry_run is False

    def test_operator_option(self) -> None:
        args = build_parser().parse_args(["--operator", "ops@example.com", "status", "wf"])

        assert args.operator == "ops@example.com"
        assert args.workflow_id == "wf"

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRunCommand:
    """Tests for run_command with a mocked service."""

    @pytest.mark.asyncio
    @patch("src.cli.school_progression.SchoolProgressionService")
    async def test_apply_prints_stats(self, mock_service_cls) -> None:
        result = ApplyResultResponse(
            workflow_id="wf",
            stats=ApplyStats(progressed=2, graduated=1, skipped_unassigned=1),
            dry_run=True,
            operation_count=9,
        )
        mock_service = MagicMock()
        mock_service.apply_workflow = AsyncMock(return_value=result)
        mock_service_cls.return_value = mock_service
        console = Console(record=True, width=120)
        args = build_parser().parse_args(["--operator", "ops", "apply", "wf", "--dry-run"])

        code = await run_command(args, MagicMock(), console)

        assert code == EXIT_OK
        mock_service.apply_workflow.assert_awaited_once_with("wf", dry_run=True)
        output = console.export_text()
        assert "Dry run" in output
        assert "without an assigned class" in output

    @pytest.mark.asyncio
    @patch("src.cli.school_progression.SchoolProgressionService")
    async def test_invalid_new_student_file(self, mock_service_cls, tmp_path) -> None:
        path = tmp_path / "student.json"
        path.write_text('{"student": {"first_name": "", "last_name": "X", "class_name": "1A"}}')
        mock_service = MagicMock()
        mock_service.add_new_student = AsyncMock()
        mock_service_cls.return_value = mock_service
        console = Console(record=True, width=120)
        args = build_parser().parse_args(["--operator", "ops", "add-student", "wf", str(path)])

        code = await run_command(args, MagicMock(), console)

        assert code == EXIT_INVALID
        mock_service.add_new_student.assert_not_awaited()
        assert "Invalid new student file" in console.export_text()


class TestRenderApplyResult:
    """Tests for apply output."""

    def test_applied_title(self) -> None:
        console = Console(record=True, width=120)
        result = ApplyResultResponse(workflow_id="wf", stats=ApplyStats(graduated=3), operation_count=7)

        render_apply_result(console, result)

        output = console.export_text()
        assert "Applied changes: wf" in output
        assert "graduated" in output
