# SPDX-License-Identifier: Apache-2.0

"""
Observability package - tracing and structured logging setup.
"""

from .config import setup_observability, setup_structured_logging, StructuredFormatter, log_action

__all__ = [
    "setup_observability",
    "setup_structured_logging",
    "StructuredFormatter",
    "log_action"
]
