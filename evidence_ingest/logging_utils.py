"""
Logging utilities for evidence ingestion.
Evidence headers, subjects and mailbox names are attacker-controlled text, so
every record is flattened to a single line before it reaches a handler.
"""

import logging
import re

_BEARER_RE = re.compile(r"(auth=Bearer\s+)[^\x01\s]+", re.IGNORECASE)


def sanitize_for_log(value: str | None, max_length: int = 200) -> str:
    """
    Sanitize evidence-derived text for safe logging.

    Args:
        value: String taken from a header, filename or mailbox listing
        max_length: Truncation limit

    Returns:
        Single-line string with control characters and bearer tokens removed
    """
    if not value:
        return ""

    value_str = str(value)
    value_str = _BEARER_RE.sub(r"\1***", value_str)
    value_str = value_str.replace("\n", " ").replace("\r", " ")
    value_str = re.sub(r"[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]", "", value_str)

    if len(value_str) > max_length:
        value_str = value_str[: max_length - 3] + "..."

    return value_str


class SanitizingFormatter(logging.Formatter):
    """Formatter that sanitizes the message and string args of every record."""

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, str):
            record.msg = sanitize_for_log(record.msg, max_length=2000)

        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(
                    sanitize_for_log(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
            elif isinstance(record.args, dict):
                record.args = {
                    k: sanitize_for_log(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }

        return super().format(record)


def install_log_sanitizer(level: int | None = None) -> None:
    """
    Install the sanitizing formatter on all root handlers.
    Call this once during process startup (config import does it).
    """
    root_logger = logging.getLogger()

    formatter = SanitizingFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    for handler in root_logger.handlers:
        handler.setFormatter(formatter)

    if not root_logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if level is not None:
        root_logger.setLevel(level)
