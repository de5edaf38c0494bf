"""
Run report module for LLM Rank Watcher.

Key exports:
    - build_run_report: Compute composite and review metrics for a run
    - render_report_html: Self-contained HTML (Jinja2, autoescaped)
    - write_report: Write report.html and report.json to the run directory
"""

from .generator import RunReport, build_run_report, render_report_html, write_report

__all__ = [
    "RunReport",
    "build_run_report",
    "render_report_html",
    "write_report",
]
