"""Client cache keyed by (service kind, region, role).

Readers look up clients in the currently published generation, an immutable
mapping that is only ever replaced wholesale. Writers (``refresh``, ``clear``
and lazy builds on a miss) hold the cache-wide lock, build a new generation and
publish it with a single attribute assignment. A hit never takes the lock, in
any phase, and a ``refresh`` or ``clear`` running next to readers is safe:
readers keep using the generation they already loaded.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

import boto3

from aws_client_cache.aws_credentials import RoleCredentialProvider
from aws_client_cache.config import Settings, load_settings
from aws_client_cache.execution.aws_client import ClientOptions, ServiceKind, build_client
from aws_client_cache.logging_utils import configure_logging
from aws_client_cache.topology import Job, Role, Topology, build_topology

logger = logging.getLogger(__name__)

ClientBuilder = Callable[..., Any]

# Kinds refresh builds for static-only pairs.
STATIC_KINDS: frozenset[ServiceKind] = frozenset({ServiceKind.METRICS})
REGIONAL_KINDS: tuple[ServiceKind, ...] = tuple(
    kind for kind in ServiceKind if kind is not ServiceKind.IDENTITY
)


class ClientCacheError(Exception):
    """Base class for client cache errors."""


class UnknownClientKeyError(ClientCacheError, LookupError):
    """Raised for a key outside the topology's key space (caller bug)."""


class RefreshError(ClientCacheError):
    """Raised when some clients failed to build during ``refresh``.

    Successful builds are published; failed slots stay empty and are retried
    by the next accessor call for them.
    """

    def __init__(self, failures: Mapping[ClientKey, BaseException], built: tuple[ClientKey, ...]):
        self.failures = dict(failures)
        self.built = built
        details = "; ".join(f"{key}: {exc}" for key, exc in self.failures.items())
        super().__init__(
            f"{len(self.failures)} of {len(self.failures) + len(built)} clients "
            f"failed to build: {details}"
        )


@dataclass(frozen=True)
class ClientKey:
    kind: ServiceKind
    region: str
    role: Role

    def __str__(self) -> str:
        if self.kind is ServiceKind.IDENTITY:
            return f"{self.kind.value}[{self.role}]"
        return f"{self.kind.value}[{self.role} @ {self.region or 'default'}]"


@dataclass(frozen=True)
class _Generation:
    clients: Mapping[ClientKey, Any] = field(default_factory=dict)
    refreshed: bool = False
    cleared: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "clients", MappingProxyType(dict(self.clients)))

    def with_client(self, key: ClientKey, client: Any) -> _Generation:
        clients = dict(self.clients)
        clients[key] = client
        # Once a slot is filled the generation is no longer known-empty.
        return _Generation(clients, refreshed=self.refreshed, cleared=False)


class ClientCache:
    """Get-or-build cache of AWS service clients for a closed key space."""

    def __init__(
        self,
        topology: Topology,
        *,
        fips: bool | None = None,
        debug: bool | None = None,
        settings: Settings | None = None,
        session_factory: Callable[[], Any] | None = None,
        credential_provider: RoleCredentialProvider | None = None,
        builder: ClientBuilder = build_client,
    ) -> None:
        settings = settings or load_settings()
        self._topology = topology
        options = ClientOptions.from_settings(settings)
        if fips is not None:
            options = replace(options, fips=fips)
        if debug is not None:
            options = replace(options, debug=debug)
        self._options = options
        self._sts_region = settings.aws.sts_region
        self._session_factory = session_factory or boto3.Session
        self._credential_provider = credential_provider or RoleCredentialProvider(
            region=self._sts_region,
            options=self._options,
            duration_seconds=settings.cache.assume_role_duration_seconds,
            session_name=settings.cache.role_session_name,
        )
        self._builder = builder
        self._session: Any = None
        self._lock = threading.Lock()
        self._generation = _Generation()

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def options(self) -> ClientOptions:
        return self._options

    @property
    def refreshed(self) -> bool:
        return self._generation.refreshed

    @property
    def cleared(self) -> bool:
        return self._generation.cleared

    @property
    def session_created(self) -> bool:
        return self._session is not None

    # Bulk lifecycle

    def refresh(self) -> None:
        """Build every client in the key space and publish them together.

        Static-only pairs only get a metrics client. A no-op while the cache
        is already refreshed.

        Raises:
            RefreshError: If any client failed to build. The clients that did
                build are still published.
        """
        if self._generation.refreshed:
            return

        with self._lock:
            if self._generation.refreshed:
                return

            clients: dict[ClientKey, Any] = {}
            failures: dict[ClientKey, BaseException] = {}
            for key in self._refresh_keys():
                try:
                    clients[key] = self._build(key)
                except Exception as exc:
                    logger.warning("Failed to build %s during refresh: %s", key, exc)
                    failures[key] = exc

            if failures:
                self._generation = _Generation(clients)
                raise RefreshError(failures, built=tuple(clients))

            self._generation = _Generation(clients, refreshed=True)

        logger.info("Client cache refreshed (%d clients)", len(clients))

    def clear(self) -> None:
        """Drop every cached client, keeping the key space and the session.

        Assumed-role credentials are dropped too, so the next build assumes
        each role again.
        """
        if self._generation.cleared:
            return

        with self._lock:
            if self._generation.cleared:
                return
            dropped = len(self._generation.clients)
            self._generation = _Generation(cleared=True)
            self._credential_provider.reset()

        logger.info("Client cache cleared (%d clients dropped)", dropped)

    # Accessors

    def get_client(self, kind: ServiceKind, region: str, role: Role) -> Any:
        """Return the cached client for the key, building it on a miss.

        Raises:
            UnknownClientKeyError: If the key is outside the key space.
        """
        key = self._make_key(kind, region, role)
        client = self._generation.clients.get(key)
        if client is not None:
            return client

        with self._lock:
            generation = self._generation
            client = generation.clients.get(key)
            if client is not None:
                return client
            client = self._build(key)
            self._generation = generation.with_client(key, client)
            return client

    def peek(self, kind: ServiceKind, region: str, role: Role) -> Any | None:
        """Return the cached client for the key without building one."""
        return self._generation.clients.get(self._make_key(kind, region, role))

    def get_identity_client(self, role: Role) -> Any:
        return self.get_client(ServiceKind.IDENTITY, "", role)

    def get_metrics_client(self, region: str, role: Role) -> Any:
        return self.get_client(ServiceKind.METRICS, region, role)

    def get_tagging_client(self, region: str, role: Role) -> Any:
        return self.get_client(ServiceKind.TAGGING, region, role)

    def get_autoscaling_client(self, region: str, role: Role) -> Any:
        return self.get_client(ServiceKind.AUTOSCALING, region, role)

    def get_compute_client(self, region: str, role: Role) -> Any:
        return self.get_client(ServiceKind.COMPUTE, region, role)

    def get_migration_client(self, region: str, role: Role) -> Any:
        return self.get_client(ServiceKind.MIGRATION, region, role)

    def get_gateway_client(self, region: str, role: Role) -> Any:
        return self.get_client(ServiceKind.GATEWAY, region, role)

    # Internals

    def _make_key(self, kind: ServiceKind, region: str, role: Role) -> ClientKey:
        if kind is ServiceKind.IDENTITY:
            if not self._topology.has_role(role):
                raise UnknownClientKeyError(f"Role {role} is not declared by any job")
            return ClientKey(kind, "", role)
        if (role, region) not in self._topology:
            raise UnknownClientKeyError(
                f"Role {role} in region {region or 'default'!r} is not declared by any job"
            )
        return ClientKey(kind, region, role)

    def _refresh_keys(self) -> Iterator[ClientKey]:
        for role in sorted(self._topology.roles, key=_role_sort_key):
            yield ClientKey(ServiceKind.IDENTITY, "", role)
        for role, region in sorted(self._topology.pair_keys(), key=_pair_sort_key):
            static_only = self._topology.is_static_only(region, role)
            for kind in REGIONAL_KINDS:
                if static_only and kind not in STATIC_KINDS:
                    continue
                yield ClientKey(kind, region, role)

    def _ensure_session(self) -> Any:
        # Only called with the lock held.
        if self._session is None:
            self._session = self._session_factory()
            logger.debug("AWS session created")
        return self._session

    def _build(self, key: ClientKey) -> Any:
        session = self._ensure_session()
        region = self._sts_region if key.kind is ServiceKind.IDENTITY else key.region
        return self._builder(
            key.kind,
            session,
            region,
            key.role,
            self._options,
            self._credential_provider,
        )


def _role_sort_key(role: Role) -> tuple[str, str]:
    return (role.role_arn, role.external_id)


def _pair_sort_key(pair: tuple[Role, str]) -> tuple[str, str, str]:
    role, region = pair
    return (role.role_arn, role.external_id, region)


def new_client_cache(
    jobs: Iterable[Job],
    *,
    settings: Settings | None = None,
    setup_logging: bool = False,
    **kwargs: Any,
) -> ClientCache:
    """Build the topology for ``jobs`` and return an empty cache over it.

    Pass ``setup_logging=True`` when the cache is created by the process
    entry point and should also install the process log handlers.
    """
    settings = settings or load_settings()
    if setup_logging:
        configure_logging(settings)
    topology = build_topology(jobs)
    static_only = sum(1 for pair in topology.pair_keys() if topology.pairs[pair])
    logger.info(
        "Client cache topology: %d roles, %d role/region pairs (%d static-only)",
        len(topology.roles),
        len(topology.pairs),
        static_only,
    )
    return ClientCache(topology, settings=settings, **kwargs)
