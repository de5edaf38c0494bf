"""
Custom exceptions for LLM Rank Watcher.

All application errors inherit from RankWatcherError so callers can catch
every domain failure with a single except clause.

Exception Hierarchy:
    RankWatcherError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── APIKeyMissingError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   ├── DatabaseMigrationError
    │   ├── DatabaseQueryError
    │   └── RankingDataIntegrityError
    ├── LLMProviderError
    │   ├── LLMAuthenticationError
    │   ├── LLMRateLimitError
    │   ├── LLMTimeoutError
    │   └── LLMResponseError
    ├── RunStateError
    ├── RunExecutionError
    └── OverrideValidationError

Note that an ambiguous or unstructured reply is NOT an error: the extractor
reports it through ExtractionFlags and the prompt simply scores 0.
"""


class RankWatcherError(Exception):
    """Base exception for all LLM Rank Watcher errors."""

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(RankWatcherError):
    """
    Base class for configuration-related errors.

    Should be caught by the CLI and result in exit code 1.
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Configuration file does not exist at the specified path."""

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("Field 'prompts' must be a non-empty list")
    """

    pass


class APIKeyMissingError(ConfigurationError):
    """Required API key environment variable is not set."""

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(RankWatcherError):
    """
    Base class for database-related errors.

    Should be caught by the CLI and result in exit code 2.
    """

    pass


class DatabaseInitError(DatabaseError):
    """SQLite database cannot be created or opened."""

    pass


class DatabaseMigrationError(DatabaseError):
    """Migrating from one schema version to another failed."""

    pass


class DatabaseQueryError(DatabaseError):
    """A SQL statement failed to execute."""

    pass


class RankingDataIntegrityError(DatabaseError):
    """
    A stored ranking or flag set could not be decoded.

    Raised when re-reading an outcome whose JSON columns are malformed or do
    not match the expected schema. Stored data is never silently coerced to
    an empty ranking.

    Example:
        raise RankingDataIntegrityError(
            "Outcome 12: ranking_json is not valid JSON"
        )
    """

    pass


# ============================================================================
# LLM Provider Errors
# ============================================================================


class LLMProviderError(RankWatcherError):
    """
    Base class for completion-service failures.

    The orchestrator treats any of these as a failure of the current prompt
    and fails the whole run fast.
    """

    pass


class LLMAuthenticationError(LLMProviderError):
    """Provider rejected the API key (never retried)."""

    pass


class LLMRateLimitError(LLMProviderError):
    """Provider rate limit exceeded after all retry attempts."""

    pass


class LLMTimeoutError(LLMProviderError):
    """
    Completion request exceeded its operation-level timeout.

    Example:
        raise LLMTimeoutError("Completion timed out after 60.0s")
    """

    pass


class LLMResponseError(LLMProviderError):
    """Provider returned an error status or a malformed response body."""

    pass


# ============================================================================
# Run Errors
# ============================================================================


class RunStateError(RankWatcherError):
    """
    Operation is not allowed in the current state of a run or outcome.

    Examples: unknown run id, executing a run that already has outcomes
    without ``force``, overriding an outcome that does not exist.
    """

    pass


class RunExecutionError(RankWatcherError):
    """
    A run failed because one prompt's completion call failed.

    The run is marked ``failed`` before this is raised. Outcomes of prompts
    processed earlier stay persisted.

    Attributes:
        run_id: Identifier of the failed run
        prompt_id: Prompt whose completion call failed
        completed_prompts: Number of prompts persisted before the failure
        tokens_used: Tokens spent on the prompts that completed
    """

    def __init__(
        self,
        message: str,
        run_id: str | None = None,
        prompt_id: str | None = None,
        completed_prompts: int = 0,
        tokens_used: int = 0,
    ):
        super().__init__(message)
        self.run_id = run_id
        self.prompt_id = prompt_id
        self.completed_prompts = completed_prompts
        self.tokens_used = tokens_used


# ============================================================================
# Override Errors
# ============================================================================


class OverrideValidationError(RankWatcherError):
    """
    A manual override ranking was rejected.

    Raised before any state is mutated; the outcome stays unchanged.

    Example:
        raise OverrideValidationError("position must be between 1 and 3, got 4")
    """

    pass
