"""
Configuration management and loading.

Builds the exporter configuration from environment variables and an
optional YAML pricing file.
"""

import math
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from llm_cost_exporter.core.errors import ConfigError
from llm_cost_exporter.core.pricing import DEFAULT_PRICING_TABLE, ModelPricing, PricingTable
from llm_cost_exporter.core.usage import ProviderIdentity

SUPPORTED_PROVIDERS = ("openai", "anthropic", "bedrock")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI billing API settings."""
    api_key: str
    model: str = "gpt-4"
    base_url: str = "https://api.openai.com"

    @property
    def identity(self) -> ProviderIdentity:
        return ProviderIdentity("openai", self.model)


@dataclass(frozen=True)
class AnthropicConfig:
    """Anthropic Admin API settings."""
    api_key: str
    model: str = "claude-3-opus"
    base_url: str = "https://api.anthropic.com"

    @property
    def identity(self) -> ProviderIdentity:
        return ProviderIdentity("anthropic", self.model)


@dataclass(frozen=True)
class AssumeRoleConfig:
    """STS role assumption for the Bedrock provider."""
    enabled: bool = False
    role_arn: str = ""
    session_name: str = "llm-cost-exporter"
    duration_seconds: int = 3600

    def __post_init__(self):
        """Validate role settings when assumption is enabled."""
        if self.enabled and not self.role_arn:
            raise ConfigError("BEDROCK_ROLE_ARN is required when BEDROCK_ASSUME_ROLE_ENABLED is set")
        if not 900 <= self.duration_seconds <= 43200:
            raise ConfigError("BEDROCK_ASSUME_ROLE_DURATION must be between 900 and 43200")


@dataclass(frozen=True)
class BedrockConfig:
    """Bedrock CloudWatch settings."""
    model_id: str = "anthropic.claude-3-sonnet-20240229-v1:0"
    region: str = "us-east-1"
    assume_role: AssumeRoleConfig = field(default_factory=AssumeRoleConfig)

    @property
    def identity(self) -> ProviderIdentity:
        return ProviderIdentity("bedrock", self.model_id)


@dataclass(frozen=True)
class ExporterConfig:
    """Complete exporter configuration."""
    providers: Tuple[object, ...]
    pricing: PricingTable = DEFAULT_PRICING_TABLE
    poll_interval_seconds: float = 300.0
    request_timeout_seconds: float = 30.0
    listen_host: str = "0.0.0.0"
    listen_port: int = 8000

    def __post_init__(self):
        """Validate intervals and provider identities."""
        if not math.isfinite(self.poll_interval_seconds) or self.poll_interval_seconds <= 0:
            raise ConfigError("LLM_EXPORTER_POLL_INTERVAL must be a finite number > 0")
        if not math.isfinite(self.request_timeout_seconds) or self.request_timeout_seconds <= 0:
            raise ConfigError("LLM_EXPORTER_TIMEOUT must be a finite number > 0")
        if not 0 < self.listen_port < 65536:
            raise ConfigError("LLM_EXPORTER_PORT must be between 1 and 65535")
        names = [provider.identity.provider_name for provider in self.providers]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ConfigError(f"Duplicate provider names: {sorted(duplicates)}")

    @property
    def identities(self) -> Tuple[ProviderIdentity, ...]:
        return tuple(provider.identity for provider in self.providers)


def _require_env(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} not set")
    return value


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _env_number(environ: Mapping[str, str], name: str, default, cast=float):
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    # float() accepts "nan" and "inf", which slip past range checks
    if not math.isfinite(value):
        raise ConfigError(f"{name} must be a finite number, got {raw!r}")
    return value


def _parse_provider_list(raw: str) -> Tuple[str, ...]:
    names = [part.strip().lower() for part in raw.split(",") if part.strip()]
    if not names:
        raise ConfigError("LLM_EXPORTER_PROVIDERS must name at least one provider")
    unknown = set(names) - set(SUPPORTED_PROVIDERS)
    if unknown:
        raise ConfigError(
            f"Unknown providers in LLM_EXPORTER_PROVIDERS: {sorted(unknown)}; "
            f"valid providers: {list(SUPPORTED_PROVIDERS)}"
        )
    if len(set(names)) != len(names):
        raise ConfigError("LLM_EXPORTER_PROVIDERS lists a provider more than once")
    return tuple(names)


def load_exporter_config(environ: Optional[Mapping[str, str]] = None) -> ExporterConfig:
    """Load and validate exporter configuration from the environment.

    Every problem surfaces as a ConfigError naming the offending variable,
    so startup fails before the polling loop begins.

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated ExporterConfig

    Raises:
        ConfigError: If a required variable is missing or a value is invalid
    """
    environ = os.environ if environ is None else environ

    providers = []
    for name in _parse_provider_list(environ.get("LLM_EXPORTER_PROVIDERS", "openai")):
        if name == "openai":
            providers.append(OpenAIConfig(
                api_key=_require_env(environ, "OPENAI_API_KEY"),
                model=environ.get("OPENAI_MODEL", "gpt-4"),
                base_url=environ.get("OPENAI_BASE_URL", "https://api.openai.com").rstrip("/"),
            ))
        elif name == "anthropic":
            providers.append(AnthropicConfig(
                api_key=_require_env(environ, "ANTHROPIC_API_KEY"),
                model=environ.get("ANTHROPIC_MODEL", "claude-3-opus"),
                base_url=environ.get("ANTHROPIC_BASE_URL", "https://api.anthropic.com").rstrip("/"),
            ))
        else:
            assume_role = AssumeRoleConfig(
                enabled=_env_bool(environ, "BEDROCK_ASSUME_ROLE_ENABLED", False),
                role_arn=environ.get("BEDROCK_ROLE_ARN", "").strip(),
                session_name=environ.get("BEDROCK_SESSION_NAME", "llm-cost-exporter"),
                duration_seconds=_env_number(environ, "BEDROCK_ASSUME_ROLE_DURATION", 3600, int),
            )
            providers.append(BedrockConfig(
                model_id=environ.get("BEDROCK_MODEL_ID", "anthropic.claude-3-sonnet-20240229-v1:0"),
                region=environ.get("BEDROCK_REGION") or environ.get("AWS_REGION") or "us-east-1",
                assume_role=assume_role,
            ))

    return ExporterConfig(
        providers=tuple(providers),
        pricing=load_pricing_from_env(environ),
        poll_interval_seconds=_env_number(environ, "LLM_EXPORTER_POLL_INTERVAL", 300.0),
        request_timeout_seconds=_env_number(environ, "LLM_EXPORTER_TIMEOUT", 30.0),
        listen_host=environ.get("LLM_EXPORTER_HOST", "0.0.0.0"),
        listen_port=_env_number(environ, "LLM_EXPORTER_PORT", 8000, int),
    )


def load_pricing_from_env(environ: Optional[Mapping[str, str]] = None) -> PricingTable:
    """Pricing table from LLM_PRICING_FILE, or the built-in rates when unset."""
    environ = os.environ if environ is None else environ
    pricing_file = environ.get("LLM_PRICING_FILE", "").strip()
    return load_pricing_table(pricing_file) if pricing_file else DEFAULT_PRICING_TABLE


def load_pricing_table(path: str) -> PricingTable:
    """Load and validate a pricing table from a YAML file.

    Expected layout::

        models:
          gpt-4:
            prompt_rate_per_1k: 0.03
            completion_rate_per_1k: 0.06

    Args:
        path: Path to YAML pricing file

    Returns:
        PricingTable replacing the default rates

    Raises:
        ConfigError: If the file is missing, not valid YAML, or invalid
    """
    pricing_path = Path(path)
    if not pricing_path.exists():
        raise ConfigError(f"Pricing file not found: {path}")

    with open(pricing_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in pricing file {path}: {e}")

    if not raw_config:
        raise ConfigError("Pricing file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigError("Pricing file must contain a mapping")

    unknown_keys = set(raw_config.keys()) - {'models'}
    if unknown_keys:
        raise ConfigError(f"Unknown pricing keys: {unknown_keys}")

    models_data = raw_config.get('models')
    if not isinstance(models_data, dict) or not models_data:
        raise ConfigError("'models' must be a non-empty dictionary")

    prices = {}
    for model_name, model_data in models_data.items():
        if not isinstance(model_data, dict):
            raise ConfigError(f"Model '{model_name}' must be a dictionary")
        prices[str(model_name)] = _parse_model_pricing(model_data, f"models.{model_name}")

    return PricingTable(prices)


def _parse_model_pricing(data: Dict, path: str) -> ModelPricing:
    """Parse and validate the rates of one model.

    Args:
        data: Model pricing data
        path: Path for error messages

    Returns:
        Validated ModelPricing

    Raises:
        ConfigError: If the rates are missing or invalid
    """
    allowed_keys = {'prompt_rate_per_1k', 'completion_rate_per_1k'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigError(f"Unknown keys in {path}: {unknown_keys}")

    rates = {}
    for key in sorted(allowed_keys):
        if key not in data:
            raise ConfigError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ConfigError(f"'{key}' in {path} must be a number")
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            raise ConfigError(f"'{key}' in {path} must be a number")
        if not rate.is_finite() or rate < 0:
            raise ConfigError(f"'{key}' in {path} must be >= 0")
        rates[key] = rate

    return ModelPricing(**rates)
