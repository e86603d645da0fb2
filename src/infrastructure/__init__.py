# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer.

This package contains the directory database connection, ORM models
and alembic migrations.
"""
