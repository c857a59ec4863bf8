from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import boto3
import pytest

from aws_client_cache.config import Settings
from aws_client_cache.execution import aws_client
from aws_client_cache.execution.aws_client import (
    SERVICE_SPECS,
    ClientOptions,
    ServiceKind,
    build_client,
    get_service_config,
    resolve_endpoint,
)
from aws_client_cache.topology import Role

ROLE_X = Role(role_arn="arn:aws:iam::123456789012:role/X", external_id="ext")


def _real_session() -> boto3.Session:
    return boto3.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )


def test_service_specs_cover_every_kind() -> None:
    assert set(SERVICE_SPECS) == set(ServiceKind)
    assert SERVICE_SPECS[ServiceKind.COMPUTE].max_retries == 10
    assert SERVICE_SPECS[ServiceKind.TAGGING].fips_endpoint is None
    assert SERVICE_SPECS[ServiceKind.AUTOSCALING].fips_endpoint is None


def test_service_config_sets_retry_count() -> None:
    assert get_service_config(ServiceKind.COMPUTE).retries == {"max_attempts": 10, "mode": "standard"}
    assert get_service_config(ServiceKind.METRICS).retries == {"max_attempts": 5, "mode": "standard"}


@pytest.mark.parametrize(
    ("kind", "expected"),
    [
        (ServiceKind.IDENTITY, "https://sts-fips.eu-west-1.amazonaws.com"),
        (ServiceKind.METRICS, "https://monitoring-fips.eu-west-1.amazonaws.com"),
        (ServiceKind.COMPUTE, "https://ec2-fips.eu-west-1.amazonaws.com"),
        (ServiceKind.MIGRATION, "https://dms-fips.eu-west-1.amazonaws.com"),
        (ServiceKind.GATEWAY, "https://apigateway-fips.eu-west-1.amazonaws.com"),
        (ServiceKind.TAGGING, None),
        (ServiceKind.AUTOSCALING, None),
    ],
)
def test_resolve_endpoint_fips(kind: ServiceKind, expected: str | None) -> None:
    assert resolve_endpoint(kind, "eu-west-1", ClientOptions(fips=True)) == expected


def test_resolve_endpoint_regional_sts() -> None:
    assert (
        resolve_endpoint(ServiceKind.IDENTITY, "eu-west-1", ClientOptions())
        == "https://sts.eu-west-1.amazonaws.com"
    )
    assert resolve_endpoint(ServiceKind.IDENTITY, "", ClientOptions()) is None
    assert resolve_endpoint(ServiceKind.METRICS, "eu-west-1", ClientOptions()) is None


def test_resolve_endpoint_override_replaces_everything() -> None:
    options = ClientOptions(fips=True, endpoint_url="http://localhost:4566")
    for kind in ServiceKind:
        assert resolve_endpoint(kind, "eu-west-1", options) == "http://localhost:4566"


def test_resolve_endpoint_fips_without_region_is_rejected() -> None:
    with pytest.raises(ValueError, match="requires a region"):
        resolve_endpoint(ServiceKind.IDENTITY, "", ClientOptions(fips=True))


def test_client_options_from_settings() -> None:
    settings = Settings.model_validate(
        {
            "aws": {"fips": True, "endpoint_url": "http://localhost:4566/"},
            "cache": {"debug_transport": True},
        }
    )
    options = ClientOptions.from_settings(settings)
    assert options == ClientOptions(fips=True, debug=True, endpoint_url="http://localhost:4566")


def test_build_client_ambient_role_does_not_assume() -> None:
    session = MagicMock()
    provider = MagicMock()

    client = build_client(
        ServiceKind.METRICS, session, "us-east-1", Role(), ClientOptions(), provider
    )

    assert client is session.client.return_value
    provider.session_for.assert_not_called()
    args, kwargs = session.client.call_args
    assert args == ("cloudwatch",)
    assert kwargs["region_name"] == "us-east-1"
    assert "endpoint_url" not in kwargs
    assert "aws_access_key_id" not in kwargs
    client.meta.events.register.assert_not_called()


def test_build_client_uses_role_session_when_arn_present() -> None:
    session = MagicMock()
    provider = MagicMock()
    role_session = provider.session_for.return_value

    client = build_client(
        ServiceKind.COMPUTE, session, "us-east-1", ROLE_X, ClientOptions(), provider
    )

    provider.session_for.assert_called_once_with(session, ROLE_X)
    session.client.assert_not_called()
    assert client is role_session.client.return_value
    args, kwargs = role_session.client.call_args
    assert args == ("ec2",)
    assert kwargs["region_name"] == "us-east-1"
    assert "aws_access_key_id" not in kwargs
    assert "aws_session_token" not in kwargs


def test_build_client_role_without_provider_is_rejected() -> None:
    with pytest.raises(ValueError, match="requires a credential provider"):
        build_client(ServiceKind.COMPUTE, MagicMock(), "us-east-1", ROLE_X, ClientOptions())


def test_build_client_empty_region_uses_sdk_default() -> None:
    session = MagicMock()
    build_client(ServiceKind.TAGGING, session, "", Role(), ClientOptions())
    assert session.client.call_args.kwargs["region_name"] is None


def test_build_client_debug_registers_wire_logging() -> None:
    session = MagicMock()
    client = build_client(ServiceKind.GATEWAY, session, "us-east-1", Role(), ClientOptions(debug=True))
    client.meta.events.register.assert_called_once_with(
        "before-send", aws_client._log_outgoing_request
    )


def test_build_client_with_real_session_applies_fips_endpoint() -> None:
    client = build_client(
        ServiceKind.COMPUTE, _real_session(), "us-east-1", Role(), ClientOptions(fips=True)
    )
    assert client.meta.endpoint_url == "https://ec2-fips.us-east-1.amazonaws.com"
    assert client.meta.region_name == "us-east-1"


def test_build_client_with_real_session_applies_endpoint_override() -> None:
    client = build_client(
        ServiceKind.MIGRATION,
        _real_session(),
        "eu-west-1",
        Role(),
        ClientOptions(endpoint_url="http://localhost:4566"),
    )
    assert client.meta.endpoint_url == "http://localhost:4566"


def test_wire_logging_redacts_sensitive_headers(caplog: pytest.LogCaptureFixture) -> None:
    request = SimpleNamespace(
        method="POST",
        url="https://monitoring.us-east-1.amazonaws.com/",
        headers={
            "Authorization": "AWS4-HMAC-SHA256 Credential=AKIA...",
            "X-Amz-Security-Token": b"very-secret",
            "Content-Type": b"application/x-www-form-urlencoded",
        },
        body=b"Action=ListMetrics&Version=2010-08-01",
    )

    with caplog.at_level(logging.DEBUG, logger="aws_client_cache.wire"):
        aws_client._log_outgoing_request(request, event_name="before-send.cloudwatch.ListMetrics")

    assert "Action=ListMetrics" in caplog.text
    assert "application/x-www-form-urlencoded" in caplog.text
    assert "AKIA" not in caplog.text
    assert "very-secret" not in caplog.text
