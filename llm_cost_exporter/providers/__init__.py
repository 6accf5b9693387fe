"""
Provider clients for the exporter.

One implementation per LLM vendor, selected from configuration.
"""

from typing import List

from llm_cost_exporter.config.loader import AnthropicConfig, BedrockConfig, ExporterConfig, OpenAIConfig

from .anthropic_client import AnthropicUsageProvider
from .base import UsageProvider
from .bedrock_client import BedrockUsageProvider
from .credentials import CredentialLease, CredentialProvisioner, LeaseState
from .openai_client import OpenAIUsageProvider


def build_providers(config: ExporterConfig) -> List[UsageProvider]:
    """Instantiate one provider client per configured provider."""
    providers: List[UsageProvider] = []
    for provider_config in config.providers:
        if isinstance(provider_config, OpenAIConfig):
            providers.append(OpenAIUsageProvider(
                api_key=provider_config.api_key,
                model=provider_config.model,
                base_url=provider_config.base_url,
                pricing=config.pricing,
                timeout=config.request_timeout_seconds,
            ))
        elif isinstance(provider_config, AnthropicConfig):
            providers.append(AnthropicUsageProvider(
                api_key=provider_config.api_key,
                model=provider_config.model,
                base_url=provider_config.base_url,
                pricing=config.pricing,
                timeout=config.request_timeout_seconds,
            ))
        elif isinstance(provider_config, BedrockConfig):
            assume_role = provider_config.assume_role
            provisioner = None
            if assume_role.enabled:
                provisioner = CredentialProvisioner(
                    role_arn=assume_role.role_arn,
                    session_name=assume_role.session_name,
                    duration_seconds=assume_role.duration_seconds,
                    region=provider_config.region,
                    timeout=config.request_timeout_seconds,
                )
            providers.append(BedrockUsageProvider(
                model_id=provider_config.model_id,
                region=provider_config.region,
                provisioner=provisioner,
                pricing=config.pricing,
                window_seconds=config.poll_interval_seconds,
                timeout=config.request_timeout_seconds,
            ))
        else:
            raise TypeError(f"Unsupported provider config: {provider_config!r}")
    return providers


__all__ = [
    "AnthropicUsageProvider",
    "BedrockUsageProvider",
    "CredentialLease",
    "CredentialProvisioner",
    "LeaseState",
    "OpenAIUsageProvider",
    "UsageProvider",
    "build_providers",
]
