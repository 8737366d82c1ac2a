"""
Table Scanner

Executes one scan of one table:

1. validate projection and quals, pick Get (all get keys pinned) or List
2. split quals into a provider filter and a post-filter remainder
3. expand the region/partition matrix
4. per entry (bounded by SCAN_PARALLELISM): list parents, list children,
   hydrate, post-filter, take a row slot, hand the row to the consumer

Rows stream through a bounded queue into a ScanStream. The consumer may stop
early; that cancels every in-flight branch without reporting an error.
A fatal failure stops the scan after the rows already emitted.
"""

import asyncio
import time
import uuid
from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Sequence

import structlog

from cloudtables.services.tables.context import (
    ConnectionCache,
    RowBudget,
    RowLimitReached,
    ScanContext,
    ScanState,
    ScanStats,
)
from cloudtables.services.tables.definitions import ColumnSpec, ColumnType, Require, TableDefinition
from cloudtables.services.tables.errors import ErrorClass, ErrorClassifier, error_code
from cloudtables.services.tables.hydrate import (
    RowContext,
    RowSource,
    RowState,
    coerce,
    hydrate_row,
    resolve_column,
)
from cloudtables.services.tables.matrix import MatrixEntry, MatrixRequest, default_region_matrix
from cloudtables.services.tables.quals import LIKE, Qual, QualSet, extract_provider_filter, row_matches
from cloudtables.services.tables.registry import TableRegistry
from cloudtables.shared.adapters.aws_endpoints import EndpointCatalog, get_endpoint_catalog
from cloudtables.shared.adapters.aws_utils import (
    AioBotoClientProvider,
    AWSConnectionConfig,
    ClientProvider,
)
from cloudtables.shared.core.async_utils import CancelToken
from cloudtables.shared.core.config import Settings, get_settings
from cloudtables.shared.core.exceptions import (
    CloudTablesException,
    MissingKeyColumnError,
    ScanAbortedError,
    ScanCancelledError,
    UnknownColumnError,
    UnsupportedRegionError,
)

logger = structlog.get_logger()

ClientFactory = Callable[[AWSConnectionConfig, EndpointCatalog], ClientProvider]


class ScanMode(str, Enum):
    GET = "get"
    LIST = "list"
    EMPTY = "empty"


class EntryUnsupported(Exception):
    """The service is not available for the current matrix entry."""


def _default_client_factory(connection: AWSConnectionConfig, catalog: EndpointCatalog) -> ClientProvider:
    return AioBotoClientProvider(connection, catalog=catalog)


def _typed_qual(qual: Qual, column: ColumnSpec) -> Qual:
    if qual.operator == LIKE:
        return qual
    target = ColumnType.STRING if column.type == ColumnType.STRING_ARRAY else column.type
    try:
        if qual.is_list:
            value: Any = [coerce(v, target) for v in qual.values]
        else:
            value = coerce(qual.value, target)
    except (TypeError, ValueError):
        return qual
    return Qual(qual.column, qual.operator, value)


class TableScanner:
    """Runs scans of registered tables against one AWS connection."""

    def __init__(
        self,
        registry: TableRegistry,
        connection: Optional[AWSConnectionConfig] = None,
        *,
        catalog: Optional[EndpointCatalog] = None,
        client_factory: Optional[ClientFactory] = None,
        parallelism: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        if not registry.built:
            registry.build()
        self.registry = registry
        self.settings = settings or get_settings()
        self.connection = connection or AWSConnectionConfig.from_settings()
        self.catalog = catalog or get_endpoint_catalog()
        self.client_factory = client_factory or _default_client_factory
        self.parallelism = parallelism or self.settings.SCAN_PARALLELISM
        if self.parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.classifier = ErrorClassifier(registry.default_ignore_codes | set(self.connection.ignore_error_codes))
        self.connection_cache = ConnectionCache()

    def scan(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        quals: Optional[Iterable[Any]] = None,
        limit: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> "ScanStream":
        """
        Prepare a scan. Nothing is called until the returned stream is iterated.

        Raises TableNotFoundError, UnknownColumnError or MissingKeyColumnError
        up front; provider failures surface from the stream.
        """
        definition = self.registry.get(table)

        if columns is None:
            projection = list(definition.columns)
        else:
            projection = []
            for name in columns:
                column = definition.column(name)
                if column is None:
                    raise UnknownColumnError(definition.name, name)
                projection.append(column)

        typed = []
        for qual in QualSet.parse(quals):
            column = definition.column(qual.column)
            if column is None:
                raise UnknownColumnError(definition.name, qual.column)
            typed.append(_typed_qual(qual, column))
        qual_set = QualSet(typed)

        mode = self._select_mode(definition, qual_set)
        run = ScanRun(
            scanner=self,
            table=definition,
            projection=projection,
            quals=qual_set,
            limit=limit,
            cancel=cancel or CancelToken(),
            mode=mode,
        )
        return ScanStream(run)

    @staticmethod
    def _select_mode(table: TableDefinition, quals: QualSet) -> ScanMode:
        get_config = table.get_config
        if get_config is not None and all(quals.has_equals(k) for k in get_config.key_columns):
            return ScanMode.GET
        if table.list_config is not None:
            missing = []
            for key in table.list_config.key_columns:
                if key.require != Require.REQUIRED:
                    continue
                if not any(q.operator in key.operators and not q.is_list for q in quals.for_column(key.name)):
                    missing.append(key.name)
            if missing:
                raise MissingKeyColumnError(table.name, missing)
            return ScanMode.LIST
        return ScanMode.EMPTY


class ScanRun:
    """Drives one scan; owned by its ScanStream."""

    def __init__(
        self,
        scanner: TableScanner,
        table: TableDefinition,
        projection: list[ColumnSpec],
        quals: QualSet,
        limit: Optional[int],
        cancel: CancelToken,
        mode: ScanMode,
    ):
        self.scanner = scanner
        self.table = table
        self.mode = mode
        self.limit = limit
        self.cancel = cancel
        self.parallelism = scanner.parallelism
        self.plan = scanner.registry.plan(table.name)
        self.projection = projection
        self.output_names = [c.name for c in projection]

        provider_filter = extract_provider_filter(quals, table.columns)
        self.post_filter = provider_filter.remaining
        needed = {c.name: c for c in projection}
        for qual in self.post_filter:
            needed.setdefault(qual.column, table.column(qual.column))
        self.needed_columns = list(needed.values())

        self.state = ScanState(
            table=table,
            quals=quals,
            provider_filter=provider_filter,
            connection=scanner.connection,
            clients=scanner.client_factory(scanner.connection, scanner.catalog),
            classifier=scanner.classifier,
            budget=RowBudget(limit),
            cancel=cancel,
            settings=scanner.settings,
            connection_cache=scanner.connection_cache,
        )
        self.state.size_pages_by_limit = not self.post_filter
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=self.parallelism)
        self.error: Optional[CloudTablesException] = None
        self.scan_id = uuid.uuid4().hex[:12]
        self.log = logger.bind(table=table.name, scan_id=self.scan_id)

    @property
    def stats(self) -> ScanStats:
        return self.state.stats

    @property
    def budget(self) -> RowBudget:
        return self.state.budget

    @property
    def classifier(self) -> ErrorClassifier:
        return self.state.classifier

    async def drive(self) -> None:
        started = time.monotonic()
        self.log.info(
            "table_scan_started",
            mode=self.mode.value,
            columns=self.output_names,
            pushed=len(self.state.provider_filter.consumed),
            post_filtered=len(self.post_filter),
            limit=self.limit,
        )
        try:
            if self.mode is ScanMode.EMPTY:
                self.log.info("table_scan_get_keys_missing")
            elif self.limit != 0:
                entries = self._entries()
                self.stats.matrix_entries = len(entries)
                await self._run_entries(entries)
        except ScanCancelledError:
            self.stats.cancelled = True
        except RowLimitReached:
            pass
        except asyncio.CancelledError:
            self.stats.cancelled = True
            raise
        except CloudTablesException as exc:
            self._fail(exc)
        except Exception as exc:
            self._fail(self._terminal(exc, self.classifier.classify(exc)))
        finally:
            await self.state.clients.aclose()
            self.log.info(
                "table_scan_finished",
                duration_ms=round((time.monotonic() - started) * 1000, 1),
                **{k: v for k, v in self.stats.as_dict().items() if k != "hydrate_calls"},
            )

    def _fail(self, exc: CloudTablesException) -> None:
        self.error = exc
        self.stats.error = exc.message
        self.log.error(
            "table_scan_aborted",
            error=exc.message,
            error_code=exc.code,
            details=exc.details,
        )

    def _terminal(self, exc: BaseException, error_class: ErrorClass) -> ScanAbortedError:
        if error_class in (ErrorClass.THROTTLED, ErrorClass.TRANSIENT):
            message = f"{self.table.name}: provider call failed after retries: {exc}"
        else:
            message = f"{self.table.name}: {exc}"
        return ScanAbortedError(
            message,
            error_class=error_class.value,
            provider_code=error_code(exc),
            details={"table": self.table.name, "error_type": type(exc).__name__},
        )

    def _entries(self) -> list[MatrixEntry]:
        request = MatrixRequest(
            connection=self.scanner.connection,
            catalog=self.scanner.catalog,
            quals=self.state.quals,
        )
        matrix = self.table.matrix or default_region_matrix
        return matrix(request)

    async def _run_entries(self, entries: list[MatrixEntry]) -> None:
        if self.parallelism == 1 or len(entries) <= 1:
            for entry in entries:
                if self.budget.exhausted:
                    break
                await self._scan_entry(entry)
            return
        await self._gather_bounded([lambda e=entry: self._scan_entry(e) for entry in entries])

    async def _gather_bounded(self, factories: list[Callable[[], Awaitable[None]]]) -> None:
        semaphore = asyncio.Semaphore(self.parallelism)

        async def run(factory: Callable[[], Awaitable[None]]) -> None:
            async with semaphore:
                if self.budget.exhausted or self.cancel.cancelled:
                    return
                await factory()

        tasks = [asyncio.create_task(run(f)) for f in factories]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _scan_entry(self, entry: MatrixEntry) -> None:
        ctx = ScanContext(self.state, self.table, entry)
        try:
            if self.mode is ScanMode.GET:
                await self._get(ctx)
            elif self.table.list_config.parent and self.parallelism > 1:
                await self._fan_out_children(ctx)
            else:
                async with aclosing(self._list_items(self.table, ctx)) as items:
                    async for item, parent in items:
                        row = RowContext(item, RowSource.LIST, parent=parent, entry=entry)
                        if not await self._emit(ctx, row):
                            break
        except RowLimitReached:
            return
        except EntryUnsupported as exc:
            self.stats.skipped_entries += 1
            self.log.info("matrix_entry_skipped", region=entry.region, reason=str(exc))

    def _ignore_codes(self, table: TableDefinition, codes: Iterable[str]) -> frozenset[str]:
        return frozenset(table.ignore_codes) | frozenset(codes)

    def _handle_operation_error(self, exc: Exception, ctx: ScanContext, operation: str) -> None:
        """Swallow ignorable failures, escalate everything else."""
        if isinstance(exc, (RowLimitReached, EntryUnsupported)):
            raise exc
        if isinstance(exc, CloudTablesException) and not isinstance(exc, UnsupportedRegionError):
            raise exc
        error_class = self.classifier.classify(exc, ctx.ignore_codes)
        if error_class is ErrorClass.NOT_FOUND_IGNORABLE:
            ctx.log.info(
                "provider_not_found_ignored",
                operation=operation,
                table=ctx.table.name,
                error_code=error_code(exc),
            )
            return
        if error_class is ErrorClass.UNSUPPORTED:
            raise EntryUnsupported(str(exc)) from exc
        raise self._terminal(exc, error_class) from exc

    async def _iter_list(self, table: TableDefinition, ctx: ScanContext, parent: Any) -> AsyncIterator[Any]:
        config = table.list_config
        op = ctx.derive(tag=config.tag, ignore_codes=self._ignore_codes(table, config.ignore_codes))
        try:
            async with aclosing(config.func(op, parent)) as items:
                async for item in items:
                    yield item
        except Exception as exc:
            self._handle_operation_error(exc, op, f"list:{table.name}")

    async def _list_items(self, table: TableDefinition, ctx: ScanContext) -> AsyncIterator[tuple[Any, Any]]:
        """(item, parent item) pairs for `table`, walking the parent chain depth-first."""
        parent_name = table.list_config.parent
        if not parent_name:
            async with aclosing(self._iter_list(table, ctx, None)) as items:
                async for item in items:
                    yield item, None
            return

        parent_table = self.scanner.registry.get(parent_name)
        async with aclosing(self._list_items(parent_table, ctx.for_parent(parent_table))) as parents:
            async for parent_item, _ in parents:
                if self.budget.exhausted:
                    return
                async with aclosing(self._iter_list(table, ctx, parent_item)) as items:
                    async for item in items:
                        yield item, parent_item

    async def _fan_out_children(self, ctx: ScanContext) -> None:
        """Parented listing with up to `parallelism` parents' children in flight."""
        parent_table = self.scanner.registry.get(self.table.list_config.parent)
        semaphore = asyncio.Semaphore(self.parallelism)
        tasks: set[asyncio.Task] = set()

        async def children(parent_item: Any) -> None:
            try:
                async with aclosing(self._iter_list(self.table, ctx, parent_item)) as items:
                    async for item in items:
                        row = RowContext(item, RowSource.LIST, parent=parent_item, entry=ctx.entry)
                        if not await self._emit(ctx, row):
                            return
            except RowLimitReached:
                return
            finally:
                semaphore.release()

        try:
            async with aclosing(self._list_items(parent_table, ctx.for_parent(parent_table))) as parents:
                async for parent_item, _ in parents:
                    await self.cancel.guard(semaphore.acquire())
                    if self.budget.exhausted:
                        semaphore.release()
                        break
                    tasks.add(asyncio.create_task(children(parent_item)))
                    for task in [t for t in tasks if t.done()]:
                        tasks.discard(task)
                        task.result()
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _get(self, ctx: ScanContext) -> None:
        config = self.table.get_config
        op = ctx.derive(tag=config.tag, ignore_codes=self._ignore_codes(self.table, config.ignore_codes))
        try:
            item = await config.func(op, None)
        except Exception as exc:
            self._handle_operation_error(exc, op, f"get:{self.table.name}")
            return
        if item is None:
            return
        row = RowContext(item, RowSource.GET, entry=ctx.entry)
        row.seed(config.func, item)
        await self._emit(ctx, row)

    async def _emit(self, ctx: ScanContext, row: RowContext) -> bool:
        """Hydrate, filter and enqueue one row. False once the row limit is used up."""
        if self.budget.exhausted:
            return False

        hydrate_ctx = ctx.derive(ignore_codes=self.table.all_ignore_codes)
        try:
            await hydrate_row(row, self.needed_columns, self.plan, hydrate_ctx)
        except RowLimitReached:
            raise
        except Exception as exc:
            if isinstance(exc, CloudTablesException) and not isinstance(exc, UnsupportedRegionError):
                raise
            row.fail(exc)
            error_class = self.classifier.classify(exc, self.table.all_ignore_codes)
            if error_class in (ErrorClass.NOT_FOUND_IGNORABLE, ErrorClass.UNSUPPORTED):
                self.stats.rows_dropped += 1
                self.state.size_pages_by_limit = False
                ctx.log.info(
                    "row_dropped",
                    error_class=error_class.value,
                    error_code=error_code(exc),
                )
                return True
            raise self._terminal(exc, error_class) from exc

        values = {c.name: resolve_column(c, row, ctx) for c in self.needed_columns}
        if not row_matches(values, self.post_filter):
            self.stats.rows_filtered += 1
            return True

        if not self.budget.try_take():
            return False
        output = {name: values[name] for name in self.output_names}
        await self.cancel.guard(self.queue.put((row, output)))
        return True


class ScanStream:
    """
    Async iterator over the rows of one scan.

        stream = scanner.scan("aws_lambda_alias", quals=[("region", "=", "us-east-1")])
        async for row in stream:
            ...
        stream.stats.rows_emitted

    Breaking out of the loop (or calling `cancel()`) stops every branch; the
    stream then ends without an error. A terminal failure is raised after the
    rows that were already emitted.
    """

    def __init__(self, run: ScanRun):
        self._run = run
        self._consumed = False

    @property
    def table(self) -> TableDefinition:
        return self._run.table

    @property
    def columns(self) -> list[str]:
        return list(self._run.output_names)

    @property
    def stats(self) -> ScanStats:
        return self._run.stats

    @property
    def error(self) -> Optional[CloudTablesException]:
        return self._run.error

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._run.cancel.cancel(reason)

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._rows()

    async def collect(self) -> list[dict[str, Any]]:
        return [row async for row in self]

    async def _rows(self) -> AsyncIterator[dict[str, Any]]:
        if self._consumed:
            raise RuntimeError("A ScanStream can only be iterated once")
        self._consumed = True

        run = self._run
        driver = asyncio.create_task(run.drive())
        try:
            while not run.cancel.cancelled:
                if driver.done() and run.queue.empty():
                    break
                getter = asyncio.ensure_future(run.queue.get())
                done, _ = await asyncio.wait({getter, driver}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    continue
                row, values = getter.result()
                if run.cancel.cancelled:
                    break
                row.transition(RowState.EMITTED)
                run.stats.rows_emitted += 1
                yield values
        finally:
            if not driver.done():
                run.cancel.cancel("stream closed")
                try:
                    await driver
                except asyncio.CancelledError:
                    driver.cancel()
                    raise

        await driver
        if run.error is not None:
            raise run.error
