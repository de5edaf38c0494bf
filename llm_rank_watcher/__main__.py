"""
Entry point for running LLM Rank Watcher as a module.

Enables execution via:
    python -m llm_rank_watcher [command] [options]

Examples:
    python -m llm_rank_watcher --help
    python -m llm_rank_watcher run --config examples/rank_watcher.config.yaml --mock
"""

from llm_rank_watcher.cli import app

if __name__ == "__main__":
    app()
