"""
Configuration schema models for LLM Rank Watcher.

This module defines Pydantic models for validating and parsing the
rank_watcher.config.yaml file. All models use Python 3.12+ type hints and
Pydantic v2 field validators.

Models:
    RunSettings: Storage paths and completion parameters
    CompletionSettings: Completion provider, API key env var and system prompt
    Brand: Measured brand with aliases
    Competitor: Competitor with aliases
    PromptConfig: One prompt asked on every run
    WatcherConfig: Root configuration model (validates entire YAML)
    RuntimeConfig: Validated config with resolved API key and system prompt
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from llm_rank_watcher.extractor.entity_matcher import NamedEntity, build_entity_list
from llm_rank_watcher.extractor.normalizer import normalize_name

from .constants import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_SECONDS,
    MAX_PROMPT_LENGTH,
    MAX_STORED_RESPONSE_CHARS,
)


def _clean_aliases(v: list[str]) -> list[str]:
    """Strip aliases, drop empty ones and exact duplicates, keep order."""
    cleaned: list[str] = []
    for alias in v:
        if not alias or alias.isspace():
            continue
        alias = alias.strip()
        if alias not in cleaned:
            cleaned.append(alias)
    return cleaned


class RunSettings(BaseModel):
    """
    Runtime settings for watcher execution.

    Attributes:
        output_dir: Directory for HTML reports
        sqlite_db_path: Path to SQLite database holding runs and outcomes
        model: Completion model identifier
        temperature: Sampling temperature, 0.0-1.0
        max_tokens: Completion token cap, 128-4096
        request_timeout_seconds: Per-prompt completion timeout
        max_stored_response_chars: Stored reply text cut-off
    """

    output_dir: str = "./output"
    sqlite_db_path: str = "./output/rank_watcher.db"
    model: str = DEFAULT_MODEL
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=1.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=128, le=4096)
    request_timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    max_stored_response_chars: int = Field(default=MAX_STORED_RESPONSE_CHARS, ge=1)

    @field_validator("output_dir", "sqlite_db_path", "model")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Validate string settings are non-empty."""
        if not v or v.isspace():
            raise ValueError("value cannot be empty")
        return v


class CompletionSettings(BaseModel):
    """
    Completion provider settings.

    Attributes:
        provider: "openai" for the Chat Completions API, "mock" for offline
            runs that return canned replies
        env_api_key: Environment variable holding the API key
        system_prompt: Override for the default Top 3 system prompt
    """

    provider: Literal["openai", "mock"] = "openai"
    env_api_key: str = "OPENAI_API_KEY"
    system_prompt: str | None = None

    @field_validator("env_api_key")
    @classmethod
    def validate_env_api_key(cls, v: str) -> str:
        """Validate env_api_key is non-empty."""
        if not v or v.isspace():
            raise ValueError("env_api_key cannot be empty")
        return v


class Brand(BaseModel):
    """
    The measured brand.

    Example:
        brand:
          name: "Café Martínez"
          aliases: ["Cafe Martinez", "Martinez"]
    """

    name: str
    aliases: list[str] = []

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate brand name is non-empty and has matchable characters."""
        if not v or v.isspace():
            raise ValueError("Brand name cannot be empty")
        if not normalize_name(v):
            raise ValueError(f"Brand name has no letters or digits: {v!r}")
        return v.strip()

    @field_validator("aliases")
    @classmethod
    def validate_aliases(cls, v: list[str]) -> list[str]:
        """Drop empty aliases, keep declared order."""
        return _clean_aliases(v)


class Competitor(BaseModel):
    """A competitor of the measured brand, in stored (declared) order."""

    name: str
    aliases: list[str] = []

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("Competitor name cannot be empty")
        return v.strip()

    @field_validator("aliases")
    @classmethod
    def validate_aliases(cls, v: list[str]) -> list[str]:
        return _clean_aliases(v)


class PromptConfig(BaseModel):
    """
    A prompt asked on every run.

    Attributes:
        id: Unique identifier slug (alphanumeric, hyphens, underscores)
        text: Prompt text. May carry an intent annotation such as
            "Intent: price (40%)." used by intent-weighted reports.
        category: Optional category id for per-category composites
        active: Inactive prompts are kept in config but not run
    """

    id: str
    text: str
    category: str | None = None
    active: bool = True

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """
        Validate prompt ID is a valid slug.

        Must be non-empty and contain only alphanumeric characters,
        hyphens, and underscores.
        """
        if not v or v.isspace():
            raise ValueError("Prompt ID cannot be empty")
        if not all(c.isalnum() or c in "-_" for c in v):
            raise ValueError(
                f"Prompt ID must be alphanumeric with hyphens/underscores: {v}"
            )
        return v

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """
        Validate prompt is non-empty and within length limits.

        Prevents excessively long prompts that could cause runaway API costs.
        """
        if not v or v.isspace():
            raise ValueError("Prompt text cannot be empty")

        if len(v) > MAX_PROMPT_LENGTH:
            raise ValueError(
                f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH:,} characters "
                f"(received {len(v):,} characters)"
            )
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str | None) -> str | None:
        """Treat blank categories as no category."""
        if v is None or v.isspace() or not v:
            return None
        return v.strip()


class WatcherConfig(BaseModel):
    """
    Root configuration model for rank_watcher.config.yaml.

    Example:
        run_settings:
          sqlite_db_path: "./output/rank_watcher.db"
          model: "gpt-4o-mini"
        completion:
          provider: "openai"
          env_api_key: "OPENAI_API_KEY"
        brand:
          name: "Acme"
          aliases: ["Acme Inc"]
        competitors:
          - name: "Globex"
        prompts:
          - id: "best-crm"
            text: "What is the best CRM for small teams?"
            category: "crm"
    """

    run_settings: RunSettings = RunSettings()
    completion: CompletionSettings = CompletionSettings()
    brand: Brand
    competitors: list[Competitor] = []
    prompts: list[PromptConfig]

    @field_validator("prompts")
    @classmethod
    def validate_prompts_unique(cls, v: list[PromptConfig]) -> list[PromptConfig]:
        """
        Validate prompts list is non-empty and all IDs are unique.

        Raises:
            ValueError: If no prompts configured or duplicate IDs found
        """
        if not v:
            raise ValueError("At least one prompt must be configured")

        ids = [prompt.id for prompt in v]
        if len(ids) != len(set(ids)):
            duplicates = {id for id in ids if ids.count(id) > 1}
            raise ValueError(f"Duplicate prompt IDs found: {duplicates}")

        return v

    @model_validator(mode="after")
    def validate_competitors_distinct(self) -> "WatcherConfig":
        """
        Reject competitors that normalize to the brand or to each other.

        Overlapping aliases are tolerated (the first-declared entity keeps
        them); duplicated primary names would make a competitor unmatchable.
        """
        seen = {normalize_name(self.brand.name): self.brand.name}
        for competitor in self.competitors:
            key = normalize_name(competitor.name)
            if not key:
                raise ValueError(
                    f"Competitor name has no letters or digits: {competitor.name!r}"
                )
            if key in seen:
                raise ValueError(
                    f"Competitor '{competitor.name}' duplicates '{seen[key]}'"
                )
            seen[key] = competitor.name
        return self


class RuntimeConfig(BaseModel):
    """
    Runtime configuration with resolved secrets.

    Created by config.loader after validating YAML and resolving
    environment variables. This is the contract passed to the CLI commands.

    Attributes:
        run_settings: Runtime settings from config
        completion: Provider settings from config
        brand: Measured brand
        competitors: Competitors in declared order
        prompts: All configured prompts (use active_prompts() for runs)
        api_key: Resolved API key, None for the mock provider or when not
            required by the command
        system_prompt: Resolved system prompt text
    """

    run_settings: RunSettings
    completion: CompletionSettings
    brand: Brand
    competitors: list[Competitor] = []
    prompts: list[PromptConfig]
    api_key: str | None = None
    system_prompt: str

    def active_prompts(self) -> list[PromptConfig]:
        """Prompts to run, in declared order."""
        return [prompt for prompt in self.prompts if prompt.active]

    def entities(self) -> list[NamedEntity]:
        """Priority-ordered entities for extraction (brand first)."""
        return build_entity_list(
            self.brand.name,
            self.brand.aliases,
            [(c.name, c.aliases) for c in self.competitors],
        )
