"""
LLM runner module for LLM Rank Watcher.

- CompletionService protocol and factory (models)
- OpenAI Chat Completions client and mock service
- RunOrchestrator: run state machine, overrides
"""

from .models import CompletionResult, CompletionService, build_completion_service
from .runner import RunOptions, RunOrchestrator, RunResult

__all__ = [
    "CompletionResult",
    "CompletionService",
    "RunOptions",
    "RunOrchestrator",
    "RunResult",
    "build_completion_service",
]
