"""
Global pytest fixtures for the cloudtables test suite.

Provides:
- Test environment (no real credentials, no rate-limit or backoff delays)
- Process-wide state reset between tests
- A fake client provider and a fixed endpoint catalog
"""
import os

# Set test environment BEFORE any cloudtables imports
os.environ["TESTING"] = "true"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["RATE_LIMITS"] = '{"default": 100000}'
os.environ["RETRY_MIN_WAIT_SECONDS"] = "0"
os.environ["RETRY_MAX_WAIT_SECONDS"] = "0"

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from cloudtables.shared.adapters.aws_endpoints import StaticEndpointCatalog
from cloudtables.shared.adapters.aws_utils import AWSConnectionConfig
from cloudtables.shared.adapters.rate_limiter import reset_rate_budgets
from cloudtables.shared.core.config import get_settings
from cloudtables.shared.core.exceptions import UnsupportedRegionError


class FakeClientProvider:
    """Hands out pre-built fake service clients and records what was opened."""

    def __init__(self, clients: Dict[str, Any], catalog: Optional[StaticEndpointCatalog] = None):
        self.clients = clients
        self.catalog = catalog
        self.opened: List[tuple[str, str]] = []
        self.closed = False

    async def client(self, service: str, region: str, check_region: bool = True) -> Any:
        if check_region and self.catalog is not None and not self.catalog.is_supported(service, region):
            raise UnsupportedRegionError(service, region)
        self.opened.append((service, region))
        return self.clients[service]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_process_state():
    """Reset settings cache and rate budgets so tests cannot leak into each other."""
    get_settings.cache_clear()
    reset_rate_budgets()
    yield
    reset_rate_budgets()
    get_settings.cache_clear()


@pytest.fixture
def catalog() -> StaticEndpointCatalog:
    return StaticEndpointCatalog(
        {
            "aws": {
                "ec2": ["us-east-1", "us-west-2", "eu-west-1"],
                "widgets": ["us-east-1", "us-west-2", "eu-west-1"],
                "gadgets": ["us-east-1"],
                "sts": ["us-east-1", "us-west-2", "eu-west-1"],
                "apigatewayv2": ["us-east-1", "us-west-2"],
                "lambda": ["us-east-1", "us-west-2", "eu-west-1"],
                "logs": ["us-east-1"],
                "rds": ["us-east-1"],
                "cloudwatch": ["us-east-1"],
                "sqs": ["us-east-1"],
                "redshift-serverless": ["us-east-1"],
            },
            "aws-cn": {
                "ec2": ["cn-north-1"],
                "widgets": ["cn-north-1"],
            },
        }
    )


@pytest.fixture
def connection() -> AWSConnectionConfig:
    return AWSConnectionConfig(default_region="us-east-1", regions=["us-east-1"])


@pytest.fixture
def make_provider(catalog):
    """Factory for a client_factory that always returns the same FakeClientProvider."""

    def factory(clients: Dict[str, Any]):
        provider = FakeClientProvider(clients, catalog=catalog)

        def client_factory(_connection, _catalog):
            return provider

        return provider, client_factory

    return factory


@pytest.fixture
def app():
    """The FastAPI app with dependency overrides cleared after each test."""
    from cloudtables.main import app as fastapi_app

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def ac(app):
    """Async HTTP client bound to the app in-process."""
    from httpx import AsyncClient, ASGITransport

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
