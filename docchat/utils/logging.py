"""Structured logging for the ingestion and chat pipelines."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a basic root handler if none is configured yet."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


class PipelineLogger:
    """Structured logger for pipeline steps.

    Each record carries its fields under ``extra={"structured": ...}`` so a
    JSON formatter can pick them up without parsing the message.
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def log_step(
        self,
        step: str,
        outcome: str,
        *,
        document_id: str | None = None,
        latency_ms: float | None = None,
        error_reason: str | None = None,
        **fields: Any,
    ) -> None:
        """Log one pipeline step with structured data."""
        log_data: dict[str, Any] = {"step": step, "outcome": outcome, **fields}

        if document_id is not None:
            log_data["document_id"] = document_id
        if latency_ms is not None:
            log_data["latency_ms"] = round(latency_ms, 2)
        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"{step}: {outcome}"
        if document_id is not None:
            log_msg = f"{log_msg} (document {document_id})"

        if outcome in ("success", "fallback", "skipped"):
            self._logger.info(log_msg, extra={"structured": log_data})
        elif outcome == "degraded":
            self._logger.warning(log_msg, extra={"structured": log_data})
        else:
            self._logger.error(log_msg, extra={"structured": log_data})
