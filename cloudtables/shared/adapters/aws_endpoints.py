"""
AWS Endpoint Metadata

Resolves which regions and partitions publish an endpoint for a service from
botocore's bundled endpoints data, so newly launched regions show up without
a code change. Used by the matrix expander and the client provider to decide
whether a (service, region) pair is supported at all.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import structlog
from botocore.loaders import create_loader
from botocore.regions import EndpointResolver
from botocore.session import get_session

logger = structlog.get_logger()

class EndpointCatalog(ABC):
    """Service -> partition -> regions view over provider-published metadata."""

    @abstractmethod
    def partitions(self) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def regions(self, service: str, partition: str = "aws") -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def partition_of(self, region: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def all_regions(self, partition: str = "aws") -> List[str]:
        raise NotImplementedError

    def hostname(self, service: str, region: str) -> Optional[str]:
        return None

    def is_supported(self, service: str, region: str) -> bool:
        partition = self.partition_of(region)
        if partition is None:
            return False
        return region in self.regions(service, partition)


class BotocoreEndpointCatalog(EndpointCatalog):
    """EndpointCatalog backed by botocore's endpoints.json."""

    def __init__(self) -> None:
        self._session = get_session()
        self._resolver = EndpointResolver(create_loader().load_data("endpoints"))
        self._region_cache: Dict[tuple[str, str], List[str]] = {}
        self._partition_by_region: Dict[str, str] = {}

    def partitions(self) -> List[str]:
        return list(self._session.get_available_partitions())

    def regions(self, service: str, partition: str = "aws") -> List[str]:
        key = (service, partition)
        if key not in self._region_cache:
            try:
                regions = self._session.get_available_regions(
                    service, partition_name=partition
                )
            except Exception as exc:
                logger.warning(
                    "endpoint_regions_lookup_failed",
                    service=service,
                    partition=partition,
                    error=str(exc),
                )
                regions = []
            self._region_cache[key] = sorted(set(regions))
        return self._region_cache[key]

    def partition_of(self, region: str) -> Optional[str]:
        if not self._partition_by_region:
            for partition in self.partitions():
                # EC2 is published in every region of every partition
                for candidate in self._session.get_available_regions(
                    "ec2", partition_name=partition
                ):
                    self._partition_by_region[candidate] = partition
        return self._partition_by_region.get(region)

    def all_regions(self, partition: str = "aws") -> List[str]:
        return self.regions("ec2", partition)

    def hostname(self, service: str, region: str) -> Optional[str]:
        # endpoints.json is keyed by endpoint prefix (cloudwatch -> monitoring)
        try:
            metadata = self._session.get_service_data(service)["metadata"]
        except Exception as exc:
            logger.warning("endpoint_service_unknown", service=service, error=str(exc))
            return None
        prefix = metadata.get("endpointPrefix", service)
        endpoint = self._resolver.construct_endpoint(prefix, region)
        if not endpoint:
            return None
        return endpoint.get("hostname")


class StaticEndpointCatalog(EndpointCatalog):
    """
    In-memory catalog: {partition: {service: [regions]}}.

    Handy for air-gapped runs and for tests that need a fixed region set.
    """

    def __init__(self, data: Dict[str, Dict[str, List[str]]]):
        self._data = data

    def partitions(self) -> List[str]:
        return list(self._data.keys())

    def regions(self, service: str, partition: str = "aws") -> List[str]:
        return list(self._data.get(partition, {}).get(service, []))

    def partition_of(self, region: str) -> Optional[str]:
        for partition, services in self._data.items():
            for regions in services.values():
                if region in regions:
                    return partition
        return None

    def all_regions(self, partition: str = "aws") -> List[str]:
        regions: set[str] = set()
        for service_regions in self._data.get(partition, {}).values():
            regions.update(service_regions)
        return sorted(regions)

    def hostname(self, service: str, region: str) -> Optional[str]:
        if not self.is_supported(service, region):
            return None
        return f"{service}.{region}.amazonaws.com"


_default_catalog: Optional[EndpointCatalog] = None


def get_endpoint_catalog() -> EndpointCatalog:
    """Returns the process-wide botocore-backed catalog."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = BotocoreEndpointCatalog()
    return _default_catalog
