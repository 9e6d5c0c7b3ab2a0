# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Burrow CLI - encrypted group messaging over Nostr."""

from .main import app, main, run

__all__ = ["main", "app", "run"]
