# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for the school directory.

This package contains domain services that encapsulate business logic.

Domains:
    auth: Operator bearer token verification.
    progression: School-year progression workflow.
"""
