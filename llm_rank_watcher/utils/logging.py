"""
Structured JSON logging for LLM Rank Watcher.

Log records are written to stderr as one JSON object per line:

    {"timestamp": "...Z", "level": "INFO", "component": "llm_rank_watcher.llm_runner.runner",
     "message": "Prompt completed", "run_id": "2025-11-02T08-30-00Z",
     "context": {"prompt_id": "best-crm", "score": 0.7}}

Modules keep using ``logging.getLogger(__name__)``; only the CLI calls
setup_logging(). Structured fields are passed through ``extra``:

    >>> log_with_context(logger, logging.INFO, "Prompt completed",
    ...                  context={"prompt_id": "best-crm"}, run_id=run_id)

API keys must never reach a log line. SecretRedactingFilter masks anything
that looks like a key as a second line of protection.
"""

import json
import logging
import re
import sys
from typing import Any

from llm_rank_watcher.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """Render a LogRecord as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "run_id"):
            log_entry["run_id"] = record.run_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Mask API keys and bearer tokens in messages, args and context.

    Only the last four characters survive:
    "sk-proj-abcdef123456..." -> "sk-...3456"
    """

    SECRET_PATTERNS = [
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_-]{20,}\b"), "Bearer ***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._redact(str(arg)) for arg in record.args)

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:
            text = pattern.sub(
                lambda match, tpl=template: tpl.format(last4=match.group(0)[-4:]),
                text,
            )
        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure the root logger for JSON output on stderr.

    Args:
        verbose: Emit DEBUG records instead of INFO.
        quiet_logs: Only emit WARNING and above. Used by the CLI in human
            output mode so Rich output is not interleaved with JSON lines.
            Ignored when verbose is set.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> None:
    """
    Log a message with a structured context dict and optional run_id.

    Equivalent to ``logger.log(level, message, extra={...})``.
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if run_id is not None:
        extra["run_id"] = run_id

    logger.log(level, message, extra=extra if extra else None)
