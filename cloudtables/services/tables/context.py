"""
Scan Context

What list, get and hydrate functions see while a scan runs: the matrix entry
they serve, the scan's quals and pushed-down filter, service clients, and
`call`, the single gateway through which every provider request passes
(rate budget, bounded retry with backoff, cancellation).
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Iterable, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_random_exponential

from cloudtables.services.tables.definitions import HydrateConfig, RateTag, TableDefinition
from cloudtables.services.tables.errors import ErrorClassifier, error_code
from cloudtables.services.tables.paginator import PageSpec, paginate
from cloudtables.services.tables.quals import ProviderFilter, QualSet
from cloudtables.shared.adapters.aws_utils import AWSConnectionConfig, ClientProvider
from cloudtables.shared.adapters.rate_limiter import wait_for_rate_budget
from cloudtables.shared.core.async_utils import CancelToken, maybe_await
from cloudtables.shared.core.config import Settings

if TYPE_CHECKING:
    from cloudtables.services.tables.hydrate import RowContext
    from cloudtables.services.tables.matrix import MatrixEntry

logger = structlog.get_logger()

DEFAULT_TAG = RateTag("default")


class RowLimitReached(Exception):
    """Raised at a call site once the scan's row limit is used up."""


@dataclass
class ScanStats:
    rows_emitted: int = 0
    rows_filtered: int = 0
    rows_dropped: int = 0
    provider_calls: int = 0
    retries: int = 0
    matrix_entries: int = 0
    skipped_entries: int = 0
    hydrate_calls: dict[str, int] = field(default_factory=dict)
    cancelled: bool = False
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class RowBudget:
    """
    Scan-wide row limit shared by every branch.

    A slot is taken right before a row is handed to the consumer, so the
    consumer never sees more than `limit` rows however many branches race.
    """

    def __init__(self, limit: Optional[int]):
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")
        self.limit = limit
        self.taken = 0
        self._lock = threading.Lock()

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.taken)

    @property
    def exhausted(self) -> bool:
        return self.limit is not None and self.taken >= self.limit

    def try_take(self) -> bool:
        with self._lock:
            if self.exhausted:
                return False
            self.taken += 1
            return True


class ConnectionCache:
    """Per-connection memo for values every table shares (account id, etc.)."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        if key in self._values:
            return self._values[key]
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key not in self._values:
                self._values[key] = await factory()
        return self._values[key]

    def clear(self) -> None:
        self._values.clear()
        self._locks.clear()


@dataclass
class ScanState:
    """State shared by every branch of one scan."""

    table: TableDefinition
    quals: QualSet
    provider_filter: ProviderFilter
    connection: AWSConnectionConfig
    clients: ClientProvider
    classifier: ErrorClassifier
    budget: RowBudget
    cancel: CancelToken
    settings: Settings
    connection_cache: ConnectionCache
    stats: ScanStats = field(default_factory=ScanStats)
    # off once a fetched row can fail to become an emitted row
    size_pages_by_limit: bool = True


def rate_tag_for(fn: Callable[..., Any]) -> Optional[RateTag]:
    """(service, operation) of a bound aioboto3 client method, if it is one."""
    client = getattr(fn, "__self__", None)
    try:
        meta = client.meta
        service = meta.service_model.service_name
        action = meta.method_to_api_mapping.get(fn.__name__, fn.__name__)
    except AttributeError:
        return None
    if not isinstance(service, str) or not isinstance(action, str):
        return None
    return RateTag(service, action)


class ScanContext:
    def __init__(
        self,
        state: ScanState,
        table: TableDefinition,
        entry: "MatrixEntry",
        *,
        leaf: bool = True,
        tag: Optional[RateTag] = None,
        ignore_codes: Iterable[str] = (),
    ):
        self.state = state
        self.table = table
        self.entry = entry
        self.leaf = leaf
        self.tag = tag
        self.ignore_codes = frozenset(ignore_codes)
        self.log = logger.bind(table=table.name, region=entry.region)

    @property
    def region(self) -> str:
        return self.entry.region

    @property
    def partition(self) -> str:
        return self.entry.partition

    @property
    def settings(self) -> Settings:
        return self.state.settings

    @property
    def connection(self) -> AWSConnectionConfig:
        return self.state.connection

    @property
    def cancel(self) -> CancelToken:
        return self.state.cancel

    @property
    def quals(self) -> QualSet:
        # parents are listed unfiltered
        return self.state.quals if self.leaf else QualSet()

    @property
    def filter(self) -> ProviderFilter:
        return self.state.provider_filter if self.leaf else ProviderFilter()

    def equals_qual(self, column: str) -> Any:
        return self.quals.equals(column)

    def derive(self, *, tag: Optional[RateTag] = None, ignore_codes: Iterable[str] = ()) -> "ScanContext":
        return ScanContext(
            self.state,
            self.table,
            self.entry,
            leaf=self.leaf,
            tag=tag,
            ignore_codes=ignore_codes,
        )

    def for_parent(self, parent: TableDefinition) -> "ScanContext":
        return ScanContext(self.state, parent, self.entry, leaf=False)

    def rows_remaining(self) -> Optional[int]:
        if not self.leaf or not self.state.size_pages_by_limit:
            return None
        return self.state.budget.remaining

    def limit_reached(self) -> bool:
        return self.state.budget.exhausted

    async def client(self, service: str) -> Any:
        return await self.state.clients.client(
            service, self.entry.region, check_region=not self.entry.is_global
        )

    async def cached(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        return await self.state.connection_cache.get_or_set(key, factory)

    def _retryable(self, exc: BaseException) -> bool:
        return self.state.classifier.is_retryable(exc, self.ignore_codes)

    def _before_sleep(self, retry_state: Any) -> None:
        self.state.stats.retries += 1
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "provider_call_retrying",
            attempt=retry_state.attempt_number,
            delay_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            error_code=error_code(exc) if exc else None,
            error=str(exc) if exc else None,
        )

    async def call(self, fn: Callable[..., Any], *args: Any, tag: Optional[RateTag] = None, **kwargs: Any) -> Any:
        """
        Issue one provider request.

        Waits for the rate budget of the call's (service, action), retries
        throttling and transient failures with jittered exponential backoff,
        and gives up as soon as the scan is cancelled. Other failures are
        raised unchanged for the engine to classify.
        """
        budget_tag = tag or rate_tag_for(fn) or self.tag or DEFAULT_TAG
        settings = self.settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.RETRY_MAX_ATTEMPTS),
            wait=wait_random_exponential(
                multiplier=settings.RETRY_MIN_WAIT_SECONDS, max=settings.RETRY_MAX_WAIT_SECONDS
            ),
            retry=retry_if_exception(self._retryable),
            sleep=self.cancel.sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                self.cancel.raise_if_cancelled()
                if self.limit_reached():
                    raise RowLimitReached()
                await wait_for_rate_budget(budget_tag.service, budget_tag.action, cancel=self.cancel)
                self.state.stats.provider_calls += 1
                result = await self.cancel.guard(maybe_await(fn(*args, **kwargs)))
        return result

    def paginate(
        self,
        fn: Callable[..., Any],
        request: dict[str, Any],
        spec: PageSpec,
        *,
        max_pages: Optional[int] = None,
    ) -> AsyncIterator[Any]:
        return paginate(self, fn, request, spec, max_pages=max_pages)

    async def invoke_hydrate(self, config: HydrateConfig, row: "RowContext") -> Any:
        stats = self.state.stats
        stats.hydrate_calls[config.func.__name__] = stats.hydrate_calls.get(config.func.__name__, 0) + 1
        op = self.derive(tag=config.tag, ignore_codes=self.ignore_codes | set(config.ignore_codes))
        return await config.func(op, row)
