"""
Configuration loader for LLM Rank Watcher.

Loads rank_watcher.config.yaml, validates it with the Pydantic models in
config.schema and resolves the API key from the environment.

Security:
    - API keys are loaded from environment variables only
    - API keys are NEVER logged or written to disk
    - Uses yaml.safe_load() to prevent code injection
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from llm_rank_watcher.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
)

from .constants import DEFAULT_SYSTEM_PROMPT
from .schema import RuntimeConfig, WatcherConfig

logger = logging.getLogger(__name__)


def format_validation_error(error: ValidationError, config_path: Path) -> str:
    """
    Render Pydantic validation errors as one indented line per problem.

    Example:
        Configuration validation failed in rank_watcher.config.yaml:
          - prompts.0.id: Value error, Prompt ID cannot be empty
    """
    error_messages = []
    for err in error.errors():
        loc = ".".join(str(x) for x in err["loc"])
        error_messages.append(f"  - {loc}: {err['msg']}")

    return f"Configuration validation failed in {config_path}:\n" + "\n".join(
        error_messages
    )


def resolve_api_key(config: WatcherConfig) -> str | None:
    """
    Resolve the completion API key from the environment.

    The mock provider needs no key and always resolves to None.

    Raises:
        APIKeyMissingError: If the configured variable is unset or blank
    """
    if config.completion.provider == "mock":
        return None

    env_var_name = config.completion.env_api_key
    api_key = os.environ.get(env_var_name)

    if not api_key:
        raise APIKeyMissingError(
            f"Environment variable ${env_var_name} not set "
            f"(required for {config.completion.provider}/{config.run_settings.model}). "
            f"Please set it in your environment or .env file."
        )

    if api_key.isspace():
        raise APIKeyMissingError(
            f"Environment variable ${env_var_name} is empty or whitespace "
            f"(required for {config.completion.provider}/{config.run_settings.model})"
        )

    return api_key


def load_config(config_path: str | Path, require_api_key: bool = True) -> RuntimeConfig:
    """
    Load rank_watcher.config.yaml and resolve secrets.

    Args:
        config_path: Path to the YAML file (relative or absolute)
        require_api_key: Resolve the API key. Commands that never call the
            completion service (report, override) pass False.

    Returns:
        RuntimeConfig ready to hand to the orchestrator

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist
        ConfigValidationError: If YAML is invalid or validation fails
        APIKeyMissingError: If the API key is required but missing
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}, "
            f"got {type(raw_config).__name__}"
        )

    try:
        watcher_config = WatcherConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigValidationError(format_validation_error(e, config_path)) from e

    api_key = resolve_api_key(watcher_config) if require_api_key else None

    system_prompt = watcher_config.completion.system_prompt or DEFAULT_SYSTEM_PROMPT

    logger.debug(
        f"Loaded config from {config_path}: "
        f"{len(watcher_config.prompts)} prompts, "
        f"{len(watcher_config.competitors)} competitors"
    )

    return RuntimeConfig(
        run_settings=watcher_config.run_settings,
        completion=watcher_config.completion,
        brand=watcher_config.brand,
        competitors=watcher_config.competitors,
        prompts=watcher_config.prompts,
        api_key=api_key,
        system_prompt=system_prompt,
    )
