"""
File writing utilities for LLM Rank Watcher report artifacts.

Layout:
    <output_dir>/<run_id>/report.html   human-readable run report
    <output_dir>/<run_id>/report.json   the same metrics, machine-readable

All files are UTF-8; JSON is pretty-printed (indent=2).
"""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

REPORT_HTML_FILENAME = "report.html"
REPORT_JSON_FILENAME = "report.json"


def create_run_directory(output_dir: str, run_id: str) -> Path:
    """
    Create <output_dir>/<run_id>, including parents. Idempotent.

    Raises:
        ValueError: If run_id would escape output_dir
        OSError: If the directory cannot be created
    """
    if not run_id or "/" in run_id or "\\" in run_id or run_id in {".", ".."}:
        raise ValueError(f"Invalid run_id for a directory name: {run_id!r}")

    run_dir = Path(output_dir) / run_id

    try:
        run_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to create directory: {run_dir}", exc_info=True)
        raise OSError(
            f"Cannot create run directory '{run_dir}': {e}. "
            f"Check disk space and permissions."
        ) from e

    logger.debug(f"Run directory ready: {run_dir}")
    return run_dir


def write_json(filepath: Path, data: dict | list) -> None:
    """
    Write data to a JSON file (indent=2, ensure_ascii=False).

    Raises:
        OSError: If file cannot be written
        TypeError: If data is not JSON-serializable
    """
    try:
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        logger.debug(f"Wrote JSON file: {filepath}")
    except OSError as e:
        logger.error(f"Failed to write JSON file: {filepath}", exc_info=True)
        raise OSError(
            f"Cannot write JSON file '{filepath}': {e}. "
            f"Check disk space and permissions."
        ) from e


def write_report_html(run_dir: Path, html: str) -> Path:
    """
    Write report.html into the run directory.

    Returns:
        Path of the written file

    Raises:
        OSError: If file cannot be written
    """
    filepath = Path(run_dir) / REPORT_HTML_FILENAME

    try:
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(html)
        logger.info(f"Wrote HTML report: {filepath}")
    except OSError as e:
        logger.error(f"Failed to write HTML report: {filepath}", exc_info=True)
        raise OSError(
            f"Cannot write HTML report '{filepath}': {e}. "
            f"Check disk space and permissions."
        ) from e

    return filepath
