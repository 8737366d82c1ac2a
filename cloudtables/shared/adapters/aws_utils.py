import asyncio
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional, Protocol
import aioboto3
import structlog
from botocore.config import Config as BotoConfig
from pydantic import BaseModel, Field

from cloudtables.shared.adapters.aws_endpoints import EndpointCatalog, get_endpoint_catalog
from cloudtables.shared.core.config import get_settings
from cloudtables.shared.core.exceptions import UnsupportedRegionError

logger = structlog.get_logger()

# Timeouts prevent indefinite hangs. botocore's own retries are disabled: the
# scan engine classifies and retries failures itself.
DEFAULT_BOTO_CONFIG = BotoConfig(
    read_timeout=30, connect_timeout=10, retries={"max_attempts": 1, "mode": "standard"}
)

# Mapping CamelCase to snake_case for aioboto3/boto3 credentials
AWS_CREDENTIAL_MAPPING = {
    "AccessKeyId": "aws_access_key_id",
    "SecretAccessKey": "aws_secret_access_key",
    "SessionToken": "aws_session_token",
    "aws_access_key_id": "aws_access_key_id",
    "aws_secret_access_key": "aws_secret_access_key",
    "aws_session_token": "aws_session_token",
}


def map_aws_credentials(credentials: Dict[str, str]) -> Dict[str, str]:
    """
    Maps credentials dictionary to valid boto3/aioboto3 kwargs.
    Handles both CamelCase (AWS standard) and snake_case (boto3) keys.
    """
    mapped: Dict[str, str] = {}
    if not credentials:
        return mapped

    for src, dst in AWS_CREDENTIAL_MAPPING.items():
        if credentials.get(src):
            mapped[dst] = credentials[src]

    return mapped


class AWSConnectionConfig(BaseModel):
    """One AWS connection: credentials plus the regions tables fan out over."""

    name: str = "aws"
    profile: Optional[str] = None
    credentials: Dict[str, str] = Field(default_factory=dict)
    default_region: str = "us-east-1"
    # fnmatch patterns; empty means default_region only
    regions: List[str] = Field(default_factory=list)
    ignore_error_codes: List[str] = Field(default_factory=list)

    @classmethod
    def from_settings(cls) -> "AWSConnectionConfig":
        settings = get_settings()
        return cls(
            profile=settings.AWS_PROFILE,
            credentials={
                "aws_access_key_id": settings.AWS_ACCESS_KEY_ID or "",
                "aws_secret_access_key": settings.AWS_SECRET_ACCESS_KEY or "",
                "aws_session_token": settings.AWS_SESSION_TOKEN or "",
            },
            default_region=settings.AWS_DEFAULT_REGION,
            regions=list(settings.AWS_REGIONS),
        )

    @property
    def region_patterns(self) -> List[str]:
        return self.regions or [self.default_region]


def get_boto_session(connection: AWSConnectionConfig) -> aioboto3.Session:
    """Returns an aioboto3 session for the connection's profile, if any."""
    if connection.profile:
        return aioboto3.Session(profile_name=connection.profile)
    return aioboto3.Session()


class ClientProvider(Protocol):
    """Hands out region-bound service clients for the lifetime of one scan."""

    async def client(self, service: str, region: str, check_region: bool = True) -> Any:
        ...

    async def aclose(self) -> None:
        ...


class AioBotoClientProvider:
    """
    Creates at most one aioboto3 client per (service, region) per scan and
    closes them all when the scan finishes.
    """

    def __init__(
        self,
        connection: AWSConnectionConfig,
        catalog: Optional[EndpointCatalog] = None,
        session: Optional[aioboto3.Session] = None,
    ):
        self.connection = connection
        self.catalog = catalog or get_endpoint_catalog()
        self.session = session or get_boto_session(connection)
        self._stack = AsyncExitStack()
        self._clients: Dict[tuple[str, str], Any] = {}
        self._lock = asyncio.Lock()

    async def client(self, service: str, region: str, check_region: bool = True) -> Any:
        key = (service, region)
        if key in self._clients:
            return self._clients[key]
        # global services have no regional endpoints to check against
        if check_region and not self.catalog.is_supported(service, region):
            raise UnsupportedRegionError(service, region)

        async with self._lock:
            if key not in self._clients:
                self._clients[key] = await self._open(service, region)
        return self._clients[key]

    async def _open(self, service: str, region: str) -> Any:
        kwargs: Dict[str, Any] = {
            "service_name": service,
            "region_name": region,
            "config": DEFAULT_BOTO_CONFIG,
        }
        kwargs.update(map_aws_credentials(self.connection.credentials))
        client = await self._stack.enter_async_context(self.session.client(**kwargs))
        logger.debug("aws_client_created", service=service, region=region)
        return client

    async def aclose(self) -> None:
        self._clients.clear()
        await self._stack.aclose()
