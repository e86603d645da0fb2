# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Progression rule for moving students into the next school year.

The rule is the single source of truth for a student's outcome. It is
used when a workflow is started and again when a departure override is
reversed, so both paths always agree.

Level / class layout:
    Classes span two consecutive levels (A and B hold levels 1-2, C and D
    levels 3-4, E and F levels 5-6; "3B" holds levels 3-4). A student on the
    first level of a pair stays in the same class; a student on the
    second level moves up and must be assigned a new class.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from src.models.progression import ChangeType

MIN_LEVEL = 1
MAX_LEVEL = 6

ADVANCE_IN_PLACE_LEVELS = frozenset({1, 3, 5})
REASSIGNMENT_LEVELS = frozenset({2, 4})
GRADUATING_LEVEL = MAX_LEVEL

CLASS_LEVEL_MAPPING: dict[str, tuple[int, ...]] = {
    "A": (1, 2),
    "B": (1, 2),
    "C": (3, 4),
    "D": (3, 4),
    "E": (5, 6),
    "F": (5, 6),
}

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_TRAILING_LETTER = re.compile(r"([A-Za-z])\s*$")


@dataclass(frozen=True)
class ProgressionOutcome:
    """Result of applying the progression rule to one student."""

    change_type: ChangeType
    current_level: int
    new_level: int
    new_class: str | None
    requires_assignment: bool


def parse_level(value: Any) -> int:
    """Parse a stored level leniently.

    Integers pass through; strings are parsed by their leading integer
    ("3" -> 3, "3.7" -> 3); floats are truncated. Anything else,
    including booleans and None, becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        match = _INT_PREFIX.match(value)
        return int(match.group(1)) if match else 0
    return 0


def determine_progression(level: Any, class_name: str | None) -> ProgressionOutcome:
    """Compute the canonical outcome for a student.

    Args:
        level: Current level; parsed with parse_level.
        class_name: Current class name.

    Returns:
        ProgressionOutcome for the student.
    """
    current = parse_level(level)

    if current in ADVANCE_IN_PLACE_LEVELS:
        return ProgressionOutcome(
            change_type=ChangeType.ADVANCE_IN_PLACE,
            current_level=current,
            new_level=current + 1,
            new_class=class_name,
            requires_assignment=False,
        )

    if current in REASSIGNMENT_LEVELS:
        return ProgressionOutcome(
            change_type=ChangeType.NEEDS_REASSIGNMENT,
            current_level=current,
            new_level=current + 1,
            new_class=None,
            requires_assignment=True,
        )

    change_type = ChangeType.GRADUATING if current == GRADUATING_LEVEL else ChangeType.INVALID
    return ProgressionOutcome(
        change_type=change_type,
        current_level=current,
        new_level=current,
        new_class=class_name,
        requires_assignment=False,
    )


def class_letter(class_name: str | None) -> str | None:
    """Return the upper-cased trailing letter of a class name ("3b" -> "B")."""
    if not class_name:
        return None
    match = _TRAILING_LETTER.search(class_name)
    return match.group(1).upper() if match else None


def level_pair(level: int) -> int:
    """Index of the two-level pair holding ``level`` (1-2 -> 1, 3-4 -> 2)."""
    return (level + 1) // 2


def is_level_valid_for_class(class_name: str | None, level: int) -> bool:
    """Check a level against its class.

    A class name starting with a number ("6A", "3b") belongs to the level
    pair of that number. A bare letter ("A", "f") uses CLASS_LEVEL_MAPPING.
    """
    if class_name and _INT_PREFIX.match(class_name):
        return level_pair(parse_level(class_name)) == level_pair(level) and MIN_LEVEL <= level
    letter = class_letter(class_name)
    if letter is None:
        return False
    return level in CLASS_LEVEL_MAPPING.get(letter, ())


def class_level_warnings(
    student_id: str,
    student_name: str,
    level: Any,
    class_name: str | None,
) -> list[str]:
    """Describe inconsistencies between a student's level and class.

    Warnings are informational; they never change the outcome.
    """
    current = parse_level(level)
    label = f"Student {student_id} ({student_name})" if student_name else f"Student {student_id}"
    warnings: list[str] = []

    if not class_name:
        warnings.append(f"{label} has no class assignment")
    elif not is_level_valid_for_class(class_name, current):
        warnings.append(f"{label} level {current} is invalid for class {class_name}")

    if not MIN_LEVEL <= current <= MAX_LEVEL:
        warnings.append(f"{label} has invalid level: {level!r}")

    return warnings
