"""Backends that observe live infrastructure."""

from driftscan.config.models import EnvironmentConfig
from driftscan.utils.errors import ConfigurationError, ErrorContext

from .aws import AWSProvider
from .base import Provider
from .static import StaticProvider


def create_provider(env_config: EnvironmentConfig) -> Provider:
    """Create the provider configured for an environment.

    Args:
        env_config: Environment configuration

    Returns:
        A fresh provider instance

    Raises:
        ConfigurationError: If the provider type is unknown
    """
    provider_config = env_config.provider
    if provider_config.type == "static":
        return StaticProvider(provider_config.path)
    if provider_config.type == "aws":
        return AWSProvider(profile=provider_config.profile, region=env_config.region)
    raise ConfigurationError(
        f"Unknown provider type: {provider_config.type}",
        context=ErrorContext(environment=env_config.name)
    )


__all__ = [
    "Provider",
    "StaticProvider",
    "AWSProvider",
    "create_provider",
]
