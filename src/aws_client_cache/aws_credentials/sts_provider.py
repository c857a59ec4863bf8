"""STS AssumeRole credential provider.

Roles carrying a role ARN are assumed with the ambient credentials of the
shared session. The optional external id is only sent when the role has one.
The provider does not retry; retry/backoff belongs to botocore's retry config.

Each assumed role gets one botocore ``RefreshableCredentials`` object, shared
by every client built for that role. botocore calls back into ``assume_role``
before the temporary credentials expire, so cached clients never hold stale
keys.
"""

from __future__ import annotations

import functools
import hashlib
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import boto3
import botocore.session
from botocore.credentials import CredentialProvider, CredentialResolver, RefreshableCredentials
from botocore.exceptions import ClientError

from aws_client_cache.execution.aws_client import ClientOptions, ServiceKind, build_client
from aws_client_cache.utils.masking import redact_sensitive_fields

if TYPE_CHECKING:
    from aws_client_cache.topology import Role

logger = logging.getLogger(__name__)

_CREDENTIAL_METHOD = "assume-role"


@dataclass(frozen=True)
class TemporaryCredentials:
    """Immutable temporary AWS credentials from STS."""

    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime
    assumed_role_arn: str
    assumed_role_id: str

    def __repr__(self) -> str:
        return (
            f"TemporaryCredentials(access_key_id={self.access_key_id[:8]}***, "
            f"expiration={self.expiration.isoformat()})"
        )

    def as_metadata(self) -> dict[str, str]:
        """Return the metadata dict botocore's refreshable credentials expect."""
        return {
            "access_key": self.access_key_id,
            "secret_key": self.secret_access_key,
            "token": self.session_token,
            "expiry_time": self.expiration.isoformat(),
        }


class STSCredentialError(Exception):
    """Raised when STS credential acquisition fails."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class _AssumedRoleSource(CredentialProvider):
    """Hands one role's refreshable credentials to a botocore session."""

    METHOD = _CREDENTIAL_METHOD

    def __init__(self, credentials: RefreshableCredentials) -> None:
        super().__init__()
        self._credentials = credentials

    def load(self) -> RefreshableCredentials:
        return self._credentials


@dataclass(frozen=True)
class _RoleEntry:
    credentials: RefreshableCredentials
    session: Any


_ERROR_CODES = {
    "MalformedPolicyDocument": "policy_error",
    "PackedPolicyTooLarge": "policy_too_large",
    "ExpiredTokenException": "token_expired",
    "RegionDisabledException": "region_disabled",
    "AccessDenied": "access_denied",
    "InvalidClientTokenId": "invalid_credentials",
    "ValidationError": "invalid_request",
}


class RoleCredentialProvider:
    """Thread-safe STS provider for AssumeRole."""

    def __init__(
        self,
        region: str = "",
        *,
        options: ClientOptions | None = None,
        duration_seconds: int = 3600,
        session_name: str = "aws-client-cache",
    ) -> None:
        self._region = region
        self._options = options or ClientOptions()
        self._duration_seconds = duration_seconds
        self._session_name = session_name
        self._client: Any = None
        self._lock = threading.Lock()
        self._roles: dict[Role, _RoleEntry] = {}
        self._roles_lock = threading.Lock()

    def session_for(self, session: Any, role: Role) -> Any:
        """Return the boto3 session whose credentials are ``role``'s.

        The first call per role assumes it; later calls reuse the same session
        and credential source.

        Raises:
            ValueError: If the role carries no role ARN
            STSCredentialError: If the initial STS call fails
        """
        return self._role_entry(session, role).session

    def credentials_for(self, session: Any, role: Role) -> RefreshableCredentials:
        return self._role_entry(session, role).credentials

    def reset(self) -> None:
        """Forget every role's credentials; the next use assumes it afresh."""
        with self._roles_lock:
            dropped = len(self._roles)
            self._roles = {}
        if dropped:
            logger.info("Dropped credentials for %d assumed roles", dropped)

    def _role_entry(self, session: Any, role: Role) -> _RoleEntry:
        entry = self._roles.get(role)
        if entry is not None:
            return entry

        with self._roles_lock:
            entry = self._roles.get(role)
            if entry is not None:
                return entry

            credentials = RefreshableCredentials.create_from_metadata(
                metadata=self.assume_role(session, role).as_metadata(),
                refresh_using=functools.partial(self._refresh_metadata, session, role),
                method=_CREDENTIAL_METHOD,
            )
            botocore_session = botocore.session.Session()
            botocore_session.register_component(
                "credential_provider", CredentialResolver([_AssumedRoleSource(credentials)])
            )
            entry = _RoleEntry(credentials, boto3.Session(botocore_session=botocore_session))
            self._roles[role] = entry
            logger.info("Credential source ready for role %s", role.role_arn)
            return entry

    def _refresh_metadata(self, session: Any, role: Role) -> dict[str, str]:
        # Called by botocore from whichever thread notices the expiry.
        logger.info("Refreshing credentials for role %s", role.role_arn)
        return self.assume_role(session, role).as_metadata()

    def _get_client(self, session: Any) -> Any:
        if self._client is not None:
            return self._client

        with self._lock:
            if self._client is not None:
                return self._client

            # The exchange itself always runs with the session's ambient credentials.
            self._client = build_client(
                ServiceKind.IDENTITY,
                session,
                self._region,
                None,
                self._options,
            )
            logger.info("STS exchange client initialized (region=%s)", self._region or "default")
            return self._client

    def assume_role(self, session: Any, role: Role) -> TemporaryCredentials:
        """
        Assume ``role`` and return its temporary credentials.

        Raises:
            ValueError: If the role carries no role ARN
            STSCredentialError: If the STS call fails
        """
        if not role.role_arn:
            raise ValueError("assume_role requires a role with a role ARN")

        client = self._get_client(session)
        safe_session_name = self._sanitize_session_name(self._session_name)

        params: dict[str, Any] = {
            "RoleArn": role.role_arn,
            "RoleSessionName": safe_session_name,
            "DurationSeconds": self._duration_seconds,
        }
        if role.external_id:
            params["ExternalId"] = role.external_id

        logger.debug("AssumeRole request: %s", redact_sensitive_fields(params))
        try:
            response = client.assume_role(**params)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            error_message = exc.response.get("Error", {}).get("Message", str(exc))

            logger.warning(
                "STS failed: role=%s, session=%s, error=%s: %s",
                role.role_arn,
                safe_session_name,
                error_code,
                error_message,
            )
            raise STSCredentialError(
                error_message, code=_ERROR_CODES.get(error_code, "sts_error")
            ) from exc

        creds = response["Credentials"]
        assumed = response["AssumedRoleUser"]

        logger.debug("Assumed role: %s, session=%s", role.role_arn, safe_session_name)

        return TemporaryCredentials(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds["SessionToken"],
            expiration=creds["Expiration"],
            assumed_role_arn=assumed["Arn"],
            assumed_role_id=assumed["AssumedRoleId"],
        )

    def _sanitize_session_name(self, name: str) -> str:
        """Sanitize for STS (2-64 chars, alphanumeric/=,.@-)."""
        safe = re.sub(r"[^a-zA-Z0-9=,.@-]", "-", name)
        safe = re.sub(r"-+", "-", safe).strip("-")
        if len(safe) > 64:
            suffix = hashlib.sha256(name.encode()).hexdigest()[:8]
            safe = safe[:55] + "-" + suffix
        return safe if len(safe) >= 2 else "cache-" + safe
