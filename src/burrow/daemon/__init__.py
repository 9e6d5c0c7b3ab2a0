# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Relay daemon: per-group listeners feeding the inbound message pipeline."""

from .pipeline import DaemonMessage, DaemonStatus, Emitter, MessagePipeline
from .service import BurrowDaemon

__all__ = [
    "BurrowDaemon",
    "DaemonMessage",
    "DaemonStatus",
    "Emitter",
    "MessagePipeline",
]
