"""
Region / Partition Matrix

A matrix function expands one scan into independent (partition, region)
entries. Regions come from the connection's configured patterns (fnmatch,
e.g. "us-*") resolved against provider endpoint metadata; an equality qual on
`region` narrows the result before any call is made.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Callable, Optional

import structlog

from cloudtables.services.tables.quals import QualSet
from cloudtables.shared.adapters.aws_endpoints import EndpointCatalog
from cloudtables.shared.adapters.aws_utils import AWSConnectionConfig

logger = structlog.get_logger()

GLOBAL_SCOPE = "global"


@dataclass(frozen=True)
class MatrixEntry:
    region: str
    partition: str = "aws"
    endpoint: Optional[str] = None
    is_global: bool = False

    @property
    def scope(self) -> str:
        """Value of the `region` column for rows of this entry."""
        return GLOBAL_SCOPE if self.is_global else self.region


@dataclass(frozen=True)
class MatrixRequest:
    connection: AWSConnectionConfig
    catalog: EndpointCatalog
    quals: QualSet


MatrixFunc = Callable[[MatrixRequest], list[MatrixEntry]]


def _has_wildcard(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?[")


def configured_regions(connection: AWSConnectionConfig, catalog: EndpointCatalog) -> list[tuple[str, str]]:
    """(region, partition) pairs matched by the connection's region patterns."""
    patterns = connection.region_patterns
    matched: list[tuple[str, str]] = []
    for partition in catalog.partitions():
        for region in catalog.all_regions(partition):
            if any(fnmatch(region, p) for p in patterns):
                matched.append((region, partition))

    known = {r for r, _ in matched}
    for pattern in patterns:
        if not _has_wildcard(pattern) and pattern not in known:
            logger.warning("matrix_region_unknown", region=pattern)
    return matched


def _restrict(entries: list[MatrixEntry], quals: QualSet) -> list[MatrixEntry]:
    wanted = quals.equals_values("region")
    if wanted is None:
        return entries
    allowed = set(wanted)
    return [e for e in entries if e.region in allowed or e.scope in allowed]


def supported_region_matrix(service: str) -> MatrixFunc:
    """Configured regions in which `service` publishes an endpoint."""

    def expand(request: MatrixRequest) -> list[MatrixEntry]:
        entries = []
        for region, partition in configured_regions(request.connection, request.catalog):
            if region not in request.catalog.regions(service, partition):
                logger.debug("matrix_region_unsupported", service=service, region=region)
                continue
            entries.append(
                MatrixEntry(
                    region=region,
                    partition=partition,
                    endpoint=request.catalog.hostname(service, region),
                )
            )
        return _restrict(entries, request.quals)

    expand.__name__ = f"supported_region_matrix[{service}]"
    return expand


def all_region_matrix(request: MatrixRequest) -> list[MatrixEntry]:
    """Every configured region, whether or not a given service runs there."""
    entries = [
        MatrixEntry(region=region, partition=partition)
        for region, partition in configured_regions(request.connection, request.catalog)
    ]
    return _restrict(entries, request.quals)


def default_region_matrix(request: MatrixRequest) -> list[MatrixEntry]:
    """The connection's default region only."""
    region = request.connection.default_region
    partition = request.catalog.partition_of(region) or "aws"
    return [MatrixEntry(region=region, partition=partition)]


def global_matrix(service: str) -> MatrixFunc:
    """
    One entry for a global service (CloudFront, IAM), addressed through the
    default region of the connection's partition. Rows report region "global".
    """

    def expand(request: MatrixRequest) -> list[MatrixEntry]:
        region = request.connection.default_region
        partition = request.catalog.partition_of(region) or "aws"
        return [
            MatrixEntry(
                region=region,
                partition=partition,
                endpoint=request.catalog.hostname(service, region),
                is_global=True,
            )
        ]

    expand.__name__ = f"global_matrix[{service}]"
    return expand
