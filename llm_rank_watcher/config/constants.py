"""
Configuration constants for LLM Rank Watcher.

This module contains global constants used across the application
to avoid tight coupling between modules.
"""

# Maximum prompt length to prevent excessive API costs
MAX_PROMPT_LENGTH = 100_000

# Stored reply text is cut to this many characters (100 KiB); extraction
# always sees the full reply
MAX_STORED_RESPONSE_CHARS = 100 * 1024

# Completion defaults
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 800
DEFAULT_TIMEOUT_SECONDS = 120.0

DEFAULT_SYSTEM_PROMPT = (
    "Answer with a clear Top 3 ranking in numbered format (1., 2., 3.). "
    "List brands first, followed by a short reason for each one."
)

# User prompt sent per configured prompt
USER_PROMPT_TEMPLATE = (
    "{prompt_text}\n\nBrand to measure: {brand_name}.\nCompetitors: {competitors}."
)
NO_COMPETITORS_LABEL = "not provided"
