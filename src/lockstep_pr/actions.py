"""
GitHub Actions workflow commands: annotations and step outputs.
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Optional, TextIO


FAILURE_OUTPUT = "failure_message"


def in_github_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


def _escape(message: str) -> str:
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def annotate(level: str, message: str, stream: Optional[TextIO] = None) -> None:
    """Print a workflow command such as ``::error::message``."""
    print(f"::{level}::{_escape(message)}", file=stream or sys.stdout, flush=True)


def write_output(name: str, value: str) -> None:
    """Set a step output through the file named by ``$GITHUB_OUTPUT``.

    Multi-line values use the heredoc form. Outside Actions this is a no-op.
    """
    output_path = os.environ.get("GITHUB_OUTPUT")
    if not output_path:
        return
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        if "\n" in value:
            delimiter = f"ghadelimiter_{uuid.uuid4().hex}"
            handle.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
        else:
            handle.write(f"{name}={value}\n")


def set_failed(message: str) -> None:
    """Report a fatal failure for downstream steps and notifications."""
    annotate("error", message)
    write_output(FAILURE_OUTPUT, message)


class ActionsAnnotationHandler(logging.Handler):
    """Re-emits warning and error records as workflow annotations."""

    def __init__(self, level: int = logging.WARNING, stream: Optional[TextIO] = None) -> None:
        super().__init__(level)
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = "error" if record.levelno >= logging.ERROR else "warning"
            annotate(level, self.format(record), self.stream)
        except Exception:
            self.handleError(record)
