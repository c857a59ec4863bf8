"""AWS client factory.

One boto3 client per call, configured for a service kind, region and role.
The factory never mutates the session it is handed. Clients for an assumed
role come from that role's session, see ``RoleCredentialProvider.session_for``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from botocore.config import Config

from aws_client_cache.utils.masking import redact_headers

if TYPE_CHECKING:
    from aws_client_cache.aws_credentials.sts_provider import RoleCredentialProvider
    from aws_client_cache.config import Settings
    from aws_client_cache.topology import Role

logger = logging.getLogger(__name__)
wire_logger = logging.getLogger("aws_client_cache.wire")

_MAX_LOGGED_BODY = 2048


class ServiceKind(str, Enum):
    IDENTITY = "identity"
    METRICS = "metrics"
    TAGGING = "tagging"
    AUTOSCALING = "autoscaling"
    COMPUTE = "compute"
    MIGRATION = "migration"
    GATEWAY = "gateway"


@dataclass(frozen=True)
class ServiceSpec:
    service_name: str
    max_retries: int
    fips_endpoint: str | None = None
    regional_endpoint: str | None = None


# https://aws.amazon.com/compliance/fips/
SERVICE_SPECS: dict[ServiceKind, ServiceSpec] = {
    ServiceKind.IDENTITY: ServiceSpec(
        "sts",
        5,
        fips_endpoint="https://sts-fips.{region}.amazonaws.com",
        regional_endpoint="https://sts.{region}.amazonaws.com",
    ),
    ServiceKind.METRICS: ServiceSpec(
        "cloudwatch", 5, fips_endpoint="https://monitoring-fips.{region}.amazonaws.com"
    ),
    ServiceKind.TAGGING: ServiceSpec("resourcegroupstaggingapi", 5),
    ServiceKind.AUTOSCALING: ServiceSpec("autoscaling", 5),
    ServiceKind.COMPUTE: ServiceSpec(
        "ec2", 10, fips_endpoint="https://ec2-fips.{region}.amazonaws.com"
    ),
    ServiceKind.MIGRATION: ServiceSpec(
        "dms", 5, fips_endpoint="https://dms-fips.{region}.amazonaws.com"
    ),
    ServiceKind.GATEWAY: ServiceSpec(
        "apigateway", 5, fips_endpoint="https://apigateway-fips.{region}.amazonaws.com"
    ),
}


@dataclass(frozen=True)
class ClientOptions:
    fips: bool = False
    debug: bool = False
    endpoint_url: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ClientOptions:
        return cls(
            fips=settings.aws.fips,
            debug=settings.cache.debug_transport,
            endpoint_url=settings.aws.endpoint_url,
        )


def resolve_endpoint(kind: ServiceKind, region: str, options: ClientOptions) -> str | None:
    """Return an explicit endpoint URL, or None to let botocore resolve it."""
    if options.endpoint_url:
        return options.endpoint_url

    spec = SERVICE_SPECS[kind]
    if options.fips and spec.fips_endpoint:
        if not region:
            raise ValueError(f"FIPS endpoint for {spec.service_name} requires a region")
        return spec.fips_endpoint.format(region=region)
    if region and spec.regional_endpoint:
        return spec.regional_endpoint.format(region=region)
    return None


def get_service_config(kind: ServiceKind) -> Config:
    return Config(
        retries={"max_attempts": SERVICE_SPECS[kind].max_retries, "mode": "standard"},
    )


def _log_outgoing_request(request: Any, **_: Any) -> None:
    body = request.body
    if isinstance(body, bytes):
        body = body[:_MAX_LOGGED_BODY].decode("utf-8", errors="replace")
    elif body is not None:
        body = str(body)[:_MAX_LOGGED_BODY]
    wire_logger.debug(
        "%s %s headers=%s body=%s",
        request.method,
        request.url,
        redact_headers(dict(request.headers)),
        body,
    )


def build_client(
    kind: ServiceKind,
    session: Any,
    region: str,
    role: Role | None,
    options: ClientOptions,
    credential_provider: RoleCredentialProvider | None = None,
):
    """Build one client of ``kind`` for ``(region, role)``.

    Credential and configuration errors propagate to the caller; nothing is
    retained between calls.
    """
    spec = SERVICE_SPECS[kind]
    kwargs: dict[str, Any] = {
        "region_name": region or None,
        "config": get_service_config(kind),
    }

    endpoint_url = resolve_endpoint(kind, region, options)
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url

    if role is not None and role.assumes_role:
        if credential_provider is None:
            raise ValueError(f"Role {role.role_arn} requires a credential provider")
        # The role session carries refreshable credentials shared by all of the role's clients.
        session = credential_provider.session_for(session, role)

    client = session.client(spec.service_name, **kwargs)

    if options.debug:
        client.meta.events.register("before-send", _log_outgoing_request)

    logger.debug(
        "Built %s client (region=%s, role=%s, endpoint=%s)",
        spec.service_name,
        region or "default",
        role if role is not None else "<ambient>",
        endpoint_url or "default",
    )
    return client
