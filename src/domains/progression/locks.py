# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process guard against concurrent applies of the same workflow.

The registry only covers one process. Deployments running several
workers need an external lease on top of it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ApplyInProgressError(Exception):
    """Raised when the workflow is already being applied."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} is already being applied")
        self.workflow_id = workflow_id


class ApplyLockRegistry:
    """Non-blocking per-workflow locks."""

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._guard = threading.Lock()

    def try_acquire(self, workflow_id: str) -> bool:
        with self._guard:
            if workflow_id in self._held:
                return False
            self._held.add(workflow_id)
            return True

    def release(self, workflow_id: str) -> None:
        with self._guard:
            self._held.discard(workflow_id)

    @contextmanager
    def hold(self, workflow_id: str) -> Iterator[None]:
        """Hold the lock for ``workflow_id`` or fail immediately.

        Raises:
            ApplyInProgressError: If another apply holds the lock.
        """
        if not self.try_acquire(workflow_id):
            raise ApplyInProgressError(workflow_id)
        try:
            yield
        finally:
            self.release(workflow_id)
