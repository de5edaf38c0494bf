"""
Tests for config loading and schema validation.

Tests cover:
- Loading a valid YAML config with defaults applied
- API key resolution from the environment (and the mock provider exemption)
- YAML errors, empty files and non-mapping roots
- Pydantic validation of brand, competitors and prompts
"""

from pathlib import Path

import pytest
import yaml

from llm_rank_watcher.config.constants import DEFAULT_MODEL, DEFAULT_SYSTEM_PROMPT
from llm_rank_watcher.config.loader import load_config
from llm_rank_watcher.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigurationError,
    ConfigValidationError,
)
from llm_rank_watcher.extractor.entity_matcher import EntityKind

EXAMPLE_CONFIG = Path(__file__).parent.parent / "examples" / "rank_watcher.config.yaml"


def _base_config(**overrides):
    config = {
        "run_settings": {"sqlite_db_path": "./out/rank.db"},
        "brand": {"name": "Acme", "aliases": ["Acme Corp", "  ", "Acme Corp"]},
        "competitors": [{"name": "Globex"}, {"name": "Initech", "aliases": ["Initrode"]}],
        "prompts": [
            {"id": "best-crm", "text": "What is the best CRM?", "category": "crm"},
            {"id": "cheap_crm", "text": "Cheapest CRM? Intent: price (40%).", "active": False},
        ],
    }
    config.update(overrides)
    return config


@pytest.fixture
def write_config(tmp_path):
    def _write(data):
        path = tmp_path / "rank_watcher.config.yaml"
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test123")


class TestLoadConfig:
    def test_valid_config(self, write_config):
        config = load_config(write_config(_base_config()))

        assert config.api_key == "sk-test123"
        assert config.brand.name == "Acme"
        assert config.brand.aliases == ["Acme Corp"]
        assert [c.name for c in config.competitors] == ["Globex", "Initech"]
        assert config.run_settings.sqlite_db_path == "./out/rank.db"
        assert config.run_settings.model == DEFAULT_MODEL
        assert config.system_prompt == DEFAULT_SYSTEM_PROMPT

    def test_active_prompts(self, write_config):
        config = load_config(write_config(_base_config()))

        assert [p.id for p in config.prompts] == ["best-crm", "cheap_crm"]
        assert [p.id for p in config.active_prompts()] == ["best-crm"]

    def test_entities_brand_first(self, write_config):
        entities = load_config(write_config(_base_config())).entities()

        assert [e.name for e in entities] == ["Acme", "Globex", "Initech"]
        assert entities[0].kind == EntityKind.MEASURED_BRAND
        assert entities[0].aliases == ("Acme Corp",)
        assert entities[2].kind == EntityKind.COMPETITOR

    def test_custom_system_prompt(self, write_config):
        data = _base_config(completion={"system_prompt": "List a Top 3."})

        assert load_config(write_config(data)).system_prompt == "List a Top 3."

    def test_accepts_string_path(self, write_config):
        path = write_config(_base_config())
        assert load_config(str(path)).brand.name == "Acme"

    def test_example_config_loads(self):
        config = load_config(EXAMPLE_CONFIG)

        assert config.brand.name == "Café Martínez"
        assert len(config.active_prompts()) < len(config.prompts)


class TestApiKey:
    def test_missing_key(self, write_config, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY")

        with pytest.raises(APIKeyMissingError, match=r"Environment variable \$OPENAI_API_KEY not set"):
            load_config(write_config(_base_config()))

    def test_whitespace_key(self, write_config, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "   ")

        with pytest.raises(APIKeyMissingError, match="empty or whitespace"):
            load_config(write_config(_base_config()))

    def test_custom_env_var(self, write_config, monkeypatch):
        monkeypatch.setenv("RANK_KEY", "sk-other")
        data = _base_config(completion={"env_api_key": "RANK_KEY"})

        assert load_config(write_config(data)).api_key == "sk-other"

    def test_not_required(self, write_config, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY")

        config = load_config(write_config(_base_config()), require_api_key=False)

        assert config.api_key is None

    def test_mock_provider_needs_no_key(self, write_config, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY")
        data = _base_config(completion={"provider": "mock"})

        assert load_config(write_config(data)).api_key is None


class TestFileErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileNotFoundError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, write_config):
        with pytest.raises(ConfigValidationError, match="Invalid YAML syntax"):
            load_config(write_config("brand: [unclosed"))

    def test_empty_file(self, write_config):
        with pytest.raises(ConfigValidationError, match="empty"):
            load_config(write_config(""))

    def test_list_root(self, write_config):
        with pytest.raises(ConfigValidationError, match="must be a mapping"):
            load_config(write_config("- a\n- b\n"))

    def test_errors_share_base(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml")


class TestSchemaValidation:
    def _assert_invalid(self, write_config, data, match):
        with pytest.raises(ConfigValidationError, match=match) as exc_info:
            load_config(write_config(data))
        assert "Configuration validation failed in" in str(exc_info.value)

    def test_missing_brand(self, write_config):
        data = _base_config()
        del data["brand"]
        self._assert_invalid(write_config, data, "brand")

    def test_blank_brand(self, write_config):
        self._assert_invalid(
            write_config, _base_config(brand={"name": "  "}), "Brand name cannot be empty"
        )

    def test_brand_without_letters(self, write_config):
        self._assert_invalid(
            write_config, _base_config(brand={"name": "!!!"}), "no letters or digits"
        )

    def test_no_prompts(self, write_config):
        self._assert_invalid(
            write_config, _base_config(prompts=[]), "At least one prompt"
        )

    def test_duplicate_prompt_ids(self, write_config):
        prompts = [{"id": "p1", "text": "A?"}, {"id": "p1", "text": "B?"}]
        self._assert_invalid(write_config, _base_config(prompts=prompts), "Duplicate prompt IDs")

    def test_invalid_prompt_id(self, write_config):
        prompts = [{"id": "best crm", "text": "A?"}]
        self._assert_invalid(write_config, _base_config(prompts=prompts), "alphanumeric")

    def test_blank_prompt_text(self, write_config):
        prompts = [{"id": "p1", "text": "   "}]
        self._assert_invalid(write_config, _base_config(prompts=prompts), "Prompt text cannot be empty")

    def test_competitor_duplicates_brand(self, write_config):
        data = _base_config(competitors=[{"name": "ACME!"}])
        self._assert_invalid(write_config, data, "duplicates 'Acme'")

    def test_competitors_duplicate_each_other(self, write_config):
        data = _base_config(competitors=[{"name": "Globex"}, {"name": "globex"}])
        self._assert_invalid(write_config, data, "duplicates 'Globex'")

    def test_unknown_provider(self, write_config):
        data = _base_config(completion={"provider": "anthropic"})
        self._assert_invalid(write_config, data, "completion.provider")

    @pytest.mark.parametrize("temperature", [-0.1, 1.5])
    def test_temperature_range(self, write_config, temperature):
        data = _base_config(run_settings={"temperature": temperature})
        self._assert_invalid(write_config, data, "run_settings.temperature")

    def test_blank_category_is_none(self, write_config):
        prompts = [{"id": "p1", "text": "A?", "category": "  "}]
        config = load_config(write_config(_base_config(prompts=prompts)))
        assert config.prompts[0].category is None
