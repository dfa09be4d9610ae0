"""Labeled logging: every output line is stamped with a component tag."""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

LABELED_LOGGER_NAME = "bstack_harness.labeled"


def label_lines(label: str, msg: object) -> str:
    """Prefix each line of *msg* (stripped) with ``[label] ``."""
    text = f"{msg}".strip()
    return "\n".join(f"[{label}] {line}" for line in text.split("\n"))


class LabeledLogger(logging.LoggerAdapter):
    """LoggerAdapter that tags every line of a message with a label.

    Multi-line messages (e.g. a chunk of tunnel log output) get the tag on
    each line, so interleaved output from several components stays readable.
    """

    def __init__(self, logger: logging.Logger, label: str) -> None:
        super().__init__(logger, {"label": label})
        self.label = label

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any],
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs.setdefault("extra", {})["label"] = self.label
        return label_lines(self.label, msg), kwargs


def get_logger(label: str) -> LabeledLogger:
    """Return a labeled logger for a component (e.g. ``"Local Server"``)."""
    return LabeledLogger(logging.getLogger(LABELED_LOGGER_NAME), label)


class _BelowLevel(logging.Filter):
    def __init__(self, level: int) -> None:
        super().__init__()
        self._level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self._level


def configure_logging(log_file: str | None = None, level: int = logging.INFO) -> None:
    """Route labeled output to stdout/stderr and diagnostics to *log_file*.

    Info lines go to stdout, warnings and errors to stderr.  The optional
    file handler receives everything with timestamps and logger names.
    """
    root = logging.getLogger()
    root.setLevel(level)

    plain = logging.Formatter("%(message)s")

    out = logging.StreamHandler(sys.stdout)
    out.setLevel(level)
    out.addFilter(_BelowLevel(logging.WARNING))
    out.setFormatter(plain)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(plain)

    handlers: list[logging.Handler] = [out, err]
    if log_file:
        fh = logging.FileHandler(log_file)
        fh.setFormatter(
            logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"),
        )
        handlers.append(fh)

    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
