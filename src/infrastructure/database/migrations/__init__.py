# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database migrations package.

Alembic migrations for the directory database: the live roster tables and
the school-year progression workflow tables.
"""
