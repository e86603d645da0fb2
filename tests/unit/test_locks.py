# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for per-workflow apply locks."""

import pytest

from src.domains.progression.locks import ApplyInProgressError, ApplyLockRegistry


class TestApplyLockRegistry:
    """Tests for ApplyLockRegistry."""

    def test_second_acquire_fails(self) -> None:
        locks = ApplyLockRegistry()

        assert locks.try_acquire("wf") is True
        assert locks.try_acquire("wf") is False
        assert locks.try_acquire("other") is True

    def test_release_allows_reacquire(self) -> None:
        locks = ApplyLockRegistry()
        locks.try_acquire("wf")

        locks.release("wf")

        assert locks.try_acquire("wf") is True

    def test_hold_raises_when_held(self) -> None:
        locks = ApplyLockRegistry()

        with locks.hold("wf"):
            with pytest.raises(ApplyInProgressError) as exc_info:
                with locks.hold("wf"):
                    pass
            assert exc_info.value.workflow_id == "wf"

        assert locks.try_acquire("wf") is True

    def test_hold_releases_on_error(self) -> None:
        locks = ApplyLockRegistry()

        with pytest.raises(RuntimeError):
            with locks.hold("wf"):
                raise RuntimeError("apply failed")

        assert locks.try_acquire("wf") is True
