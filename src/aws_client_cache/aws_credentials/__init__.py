"""AWS credential utilities."""

from aws_client_cache.aws_credentials.sts_provider import (
    RoleCredentialProvider,
    STSCredentialError,
    TemporaryCredentials,
)

__all__ = [
    "RoleCredentialProvider",
    "STSCredentialError",
    "TemporaryCredentials",
]
