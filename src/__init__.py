"""School directory backend.

Administration backend for a school directory: the roster of students
and parents and the school-year progression workflow.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
