# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Output formatting for CLI commands.

Handles JSON vs human-readable text output of handler results.
"""

from __future__ import annotations

import json
import sys
from typing import Any


def output_result(data: dict[str, Any], output_format: str = "text") -> None:
    """Print a handler result in the requested output format.

    If output is "json", pretty-print the full result without its text rendering.
    If the result has a "formatted" key, print that directly.
    Otherwise fall back to JSON.
    """
    if output_format == "json":
        print(json.dumps({k: v for k, v in data.items() if k != "formatted"}, indent=2, default=str))
    elif "formatted" in data:
        print(data["formatted"])
    else:
        print(json.dumps(data, indent=2, default=str))


def output_error(message: str) -> None:
    """Print error message to stderr."""
    print(f"Error: {message}", file=sys.stderr)
