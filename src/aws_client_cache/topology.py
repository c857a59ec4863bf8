"""Key space derivation from the scrape job topology.

The cache serves a closed set of keys: one identity client per role and one
client entry per (role, region) pair. Pairs reachable only from static jobs
are marked static-only and get a reduced client set on refresh.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class TopologyError(ValueError):
    """Raised when the job topology is malformed."""


@dataclass(frozen=True)
class Role:
    """Identity to assume. The empty role uses ambient credentials."""

    role_arn: str = ""
    external_id: str = ""

    @property
    def assumes_role(self) -> bool:
        return bool(self.role_arn)

    def __str__(self) -> str:
        return self.role_arn or "<ambient>"


class JobMode(str, Enum):
    DISCOVERY = "discovery"
    STATIC = "static"


@dataclass(frozen=True)
class Job:
    roles: tuple[Role, ...]
    regions: tuple[str, ...]
    mode: JobMode = JobMode.DISCOVERY
    name: str = ""

    def __post_init__(self) -> None:
        # Accept lists from callers while keeping the dataclass hashable.
        object.__setattr__(self, "roles", tuple(self.roles))
        object.__setattr__(self, "regions", tuple(self.regions))
        object.__setattr__(self, "mode", JobMode(self.mode))


PairKey = tuple[Role, str]


@dataclass(frozen=True)
class Topology:
    roles: frozenset[Role]
    pairs: Mapping[PairKey, bool] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pairs", MappingProxyType(dict(self.pairs)))

    def __contains__(self, key: object) -> bool:
        return key in self.pairs

    def pair_keys(self) -> Iterator[PairKey]:
        return iter(self.pairs)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def is_static_only(self, region: str, role: Role) -> bool:
        return self.pairs[(role, region)]


def _describe(job: Job, index: int) -> str:
    return job.name or f"{job.mode.value} job #{index}"


def build_topology(jobs: Iterable[Job]) -> Topology:
    """Derive the cache key space from the declared jobs.

    A pair reachable from any discovery job needs the full client set, so it
    is never static-only, whatever static jobs also name it.
    """
    roles: set[Role] = set()
    discovery_pairs: set[PairKey] = set()
    static_pairs: set[PairKey] = set()

    for index, job in enumerate(jobs):
        if job.mode is JobMode.DISCOVERY:
            if not job.roles:
                raise TopologyError(f"{_describe(job, index)} declares no roles")
            if not job.regions:
                raise TopologyError(f"{_describe(job, index)} declares no regions")
            target = discovery_pairs
        else:
            target = static_pairs

        for role in job.roles:
            roles.add(role)
            for region in job.regions:
                target.add((role, region))

    pairs: dict[PairKey, bool] = {pair: True for pair in static_pairs}
    pairs.update({pair: False for pair in discovery_pairs})
    return Topology(roles=frozenset(roles), pairs=pairs)
