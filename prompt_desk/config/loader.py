"""
Configuration management and loading.

Handles application settings and environment variables.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

from prompt_desk.core.pricing import DEFAULT_RATE_TABLE, ModelRates, RateTable
from prompt_desk.core.templating import Template
from prompt_desk.storage.db import DEFAULT_DB_PATH
from prompt_desk.storage.repository import DEFAULT_CAPACITY, DEFAULT_NAMESPACE

API_KEY_ENV_VAR = "OPENAI_API_KEY"
DEFAULT_MODEL = "gpt-4o-mini"


class ConfigurationError(Exception):
    """Raised when required configuration is missing at startup."""


@dataclass(frozen=True)
class ProviderConfig:
    """Request defaults for the LLM provider."""
    model: str = DEFAULT_MODEL
    temperature: Optional[float] = None

    def __post_init__(self):
        """Validate provider values."""
        if not self.model or not self.model.strip():
            raise ValueError("provider model cannot be empty")
        if self.temperature is not None and not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")


@dataclass(frozen=True)
class HistoryConfig:
    """Where and how much history is kept."""
    capacity: int = DEFAULT_CAPACITY
    db_path: str = DEFAULT_DB_PATH
    namespace: str = DEFAULT_NAMESPACE

    def __post_init__(self):
        """Validate history values."""
        if self.capacity <= 0:
            raise ValueError("history capacity must be > 0")
        if not self.namespace:
            raise ValueError("history namespace cannot be empty")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    rate_table: RateTable = DEFAULT_RATE_TABLE
    templates: Dict[str, Template] = field(default_factory=dict)

    def __post_init__(self):
        """The default model must be priceable."""
        self.rate_table.get_rates(self.provider.model)

    def get_template(self, name: str) -> Template:
        """Look up a configured template.

        Raises:
            KeyError: If no template has this name
        """
        if name not in self.templates:
            raise KeyError(f"Unknown template: {name}")
        return self.templates[name]


def load_api_key(env_var: str = API_KEY_ENV_VAR) -> str:
    """Read the provider API key from the environment (or a .env file).

    Raises:
        ConfigurationError: If the key is not set
    """
    load_dotenv()
    api_key = os.getenv(env_var)
    if not api_key or not api_key.strip():
        raise ConfigurationError(f"{env_var} not found in environment")
    return api_key.strip()


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Every section is optional; omitted values fall back to defaults.
    Unknown keys are rejected so typos do not pass silently.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return AppConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'provider', 'history', 'models', 'templates'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    provider = _parse_provider(_section(raw_config, 'provider'))
    history = _parse_history(_section(raw_config, 'history'))

    models_data = _section(raw_config, 'models')
    overrides = {
        name: _parse_model_rates(data, f"models.{name}")
        for name, data in models_data.items()
    }
    rate_table = DEFAULT_RATE_TABLE.merged(overrides)

    templates = {}
    for name, body in _section(raw_config, 'templates').items():
        if not isinstance(body, str) or not body.strip():
            raise ValueError(f"Template '{name}' must be a non-empty string")
        templates[str(name)] = Template(name=str(name), body=body)

    try:
        return AppConfig(
            provider=provider,
            history=history,
            rate_table=rate_table,
            templates=templates
        )
    except ValueError as e:
        raise ValueError(f"Invalid provider.model: {e}")


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_provider(data: Dict) -> ProviderConfig:
    _check_keys(data, {'model', 'temperature'}, "provider")

    model = data.get('model', DEFAULT_MODEL)
    if not isinstance(model, str):
        raise ValueError("'model' in provider must be a string")

    temperature = data.get('temperature')
    if temperature is not None:
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
            raise ValueError("'temperature' in provider must be a number")
        temperature = float(temperature)

    return ProviderConfig(model=model, temperature=temperature)


def _parse_history(data: Dict) -> HistoryConfig:
    _check_keys(data, {'capacity', 'db_path', 'namespace'}, "history")

    capacity = data.get('capacity', DEFAULT_CAPACITY)
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise ValueError("'capacity' in history must be an integer > 0")

    db_path = data.get('db_path', DEFAULT_DB_PATH)
    namespace = data.get('namespace', DEFAULT_NAMESPACE)
    if not isinstance(db_path, str) or not db_path:
        raise ValueError("'db_path' in history must be a non-empty string")
    if not isinstance(namespace, str) or not namespace:
        raise ValueError("'namespace' in history must be a non-empty string")

    return HistoryConfig(capacity=capacity, db_path=db_path, namespace=namespace)


def _parse_model_rates(data: Dict, path: str) -> ModelRates:
    """Parse and validate per-model rates.

    Args:
        data: Rate configuration data
        path: Path for error messages

    Returns:
        Validated ModelRates

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    _check_keys(data, {'input_per_1k', 'output_per_1k'}, path)

    rates = {}
    for key in ('input_per_1k', 'output_per_1k'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"'{key}' in {path} must be a number")
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"'{key}' in {path} must be a number")
        if not rate.is_finite():
            raise ValueError(f"'{key}' in {path} must be a number")
        if rate < 0:
            raise ValueError(f"'{key}' in {path} must be >= 0")
        rates[key] = rate

    return ModelRates(**rates)
