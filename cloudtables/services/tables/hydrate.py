"""
Row Hydration

A listed item becomes a row in stages: the list (or get) output is the seed,
hydrate functions enrich it on demand and columns are then resolved from the
item and the memoised hydrate results. Each hydrate runs at most once per row;
independent hydrates of the same dependency level run concurrently.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Optional

import structlog

from cloudtables.services.tables.definitions import (
    ColumnSpec,
    ColumnType,
    HydrateConfig,
    HydrateFunc,
    TableDefinition,
    hydrate_key,
)
from cloudtables.shared.core.exceptions import TableDefinitionError

if TYPE_CHECKING:
    from cloudtables.services.tables.context import ScanContext
    from cloudtables.services.tables.matrix import MatrixEntry

logger = structlog.get_logger()

_MISSING = object()


def extract_path(obj: Any, path: Optional[str]) -> Any:
    """Walk a dotted path through dicts, attributes and list indexes."""
    if obj is None or not path:
        return None
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)):
            if not part.isdigit() or int(part) >= len(current):
                return None
            current = current[int(part)]
        elif isinstance(current, (str, bytes, int, float, bool)):
            return None
        else:
            current = getattr(current, part, None)
    return current


class RowSource(str, Enum):
    LIST = "list"
    GET = "get"


class RowState(str, Enum):
    LISTED = "listed"
    PARTIALLY_HYDRATED = "partially_hydrated"
    FULLY_HYDRATED = "fully_hydrated"
    EMITTED = "emitted"
    FAILED = "failed"


_TRANSITIONS = {
    RowState.LISTED: {RowState.PARTIALLY_HYDRATED, RowState.FULLY_HYDRATED, RowState.FAILED},
    RowState.PARTIALLY_HYDRATED: {RowState.PARTIALLY_HYDRATED, RowState.FULLY_HYDRATED, RowState.FAILED},
    RowState.FULLY_HYDRATED: {RowState.EMITTED, RowState.FAILED},
    RowState.EMITTED: set(),
    RowState.FAILED: set(),
}


class RowContext:
    """One row in flight: the provider item plus hydrate results."""

    def __init__(
        self,
        item: Any,
        source: RowSource = RowSource.LIST,
        parent: Any = None,
        entry: Optional["MatrixEntry"] = None,
    ):
        self.item = item
        self.source = source
        self.parent = parent
        self.entry = entry
        self.state = RowState.LISTED
        self.error: Optional[BaseException] = None
        self._results: dict[str, Any] = {}

    def transition(self, state: RowState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid row transition {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, exc: BaseException) -> None:
        self.error = exc
        if self.state not in (RowState.EMITTED, RowState.FAILED):
            self.state = RowState.FAILED

    def seed(self, func: HydrateFunc, value: Any) -> None:
        """Pre-populate a hydrate result, e.g. with the output of Get."""
        self._results[hydrate_key(func)] = value

    def has_result(self, func: HydrateFunc) -> bool:
        return hydrate_key(func) in self._results

    def result(self, func: HydrateFunc, default: Any = None) -> Any:
        """Memoised output of a hydrate function that already ran for this row."""
        return self._results.get(hydrate_key(func), default)

    async def run(self, config: HydrateConfig, ctx: "ScanContext") -> Any:
        if config.key in self._results:
            return self._results[config.key]
        self.transition(RowState.PARTIALLY_HYDRATED)
        value = await ctx.invoke_hydrate(config, self)
        self._results[config.key] = value
        return value


class HydratePlan:
    """
    Dependency levels of a table's hydrate functions, computed once per table.

    Level 0 hydrates depend on nothing but the item; level n hydrates depend
    only on lower levels.
    """

    def __init__(self, table: TableDefinition):
        self.table = table
        self.configs: dict[str, HydrateConfig] = {cfg.key: cfg for cfg in table.hydrate}
        for column in table.columns:
            if column.hydrate is not None:
                key = hydrate_key(column.hydrate)
                self.configs.setdefault(key, HydrateConfig(func=column.hydrate))
        self.levels = self._levels()

    def _levels(self) -> dict[str, int]:
        for cfg in self.configs.values():
            for dep in cfg.depends:
                if hydrate_key(dep) not in self.configs:
                    raise TableDefinitionError(
                        f"{self.table.name}: hydrate {cfg.func.__name__} depends on undeclared {dep.__name__}",
                        details={"table": self.table.name, "hydrate": cfg.key},
                    )

        levels: dict[str, int] = {}
        visiting: set[str] = set()

        def visit(key: str) -> int:
            if key in levels:
                return levels[key]
            if key in visiting:
                raise TableDefinitionError(
                    f"{self.table.name}: hydrate dependency cycle through {key}",
                    details={"table": self.table.name, "hydrate": key},
                )
            visiting.add(key)
            deps = [hydrate_key(d) for d in self.configs[key].depends]
            level = 1 + max((visit(d) for d in deps), default=-1)
            visiting.discard(key)
            levels[key] = level
            return level

        for key in self.configs:
            visit(key)
        return levels

    def closure(self, funcs: Iterable[HydrateFunc]) -> set[str]:
        needed: set[str] = set()
        stack = [hydrate_key(f) for f in funcs]
        while stack:
            key = stack.pop()
            if key in needed:
                continue
            needed.add(key)
            stack.extend(hydrate_key(d) for d in self.configs[key].depends)
        return needed

    def schedule(self, funcs: Iterable[HydrateFunc]) -> list[list[HydrateConfig]]:
        """The hydrates needed for `funcs`, grouped by dependency level."""
        needed = self.closure(funcs)
        if not needed:
            return []
        depth = max(self.levels[k] for k in needed)
        grouped: list[list[HydrateConfig]] = [[] for _ in range(depth + 1)]
        for key in needed:
            grouped[self.levels[key]].append(self.configs[key])
        return [level for level in grouped if level]


def _from_item(column: ColumnSpec, item: Any) -> Any:
    if column.from_value:
        return item
    for path in column.source_paths:
        value = extract_path(item, path)
        if value is not None:
            return value
    return None


def needs_hydrate(column: ColumnSpec, row: RowContext) -> bool:
    """True when `column` can only be filled by running its hydrate function."""
    if column.hydrate is None or column.from_qual or column.from_matrix:
        return False
    if row.has_result(column.hydrate):
        return False
    if column.from_value:
        return True
    return _from_item(column, row.item) is None


async def hydrate_row(
    row: RowContext, columns: Iterable[ColumnSpec], plan: HydratePlan, ctx: "ScanContext"
) -> None:
    """Run the hydrates `columns` need, level by level."""
    funcs = [c.hydrate for c in columns if c.hydrate is not None and needs_hydrate(c, row)]
    for level in plan.schedule(funcs):
        pending = [cfg for cfg in level if not row.has_result(cfg.func)]
        if not pending:
            continue
        results = await asyncio.gather(*(row.run(cfg, ctx) for cfg in pending), return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
    row.transition(RowState.FULLY_HYDRATED)


def resolve_column(column: ColumnSpec, row: RowContext, ctx: "ScanContext") -> Any:
    if column.from_qual:
        value = ctx.quals.equals(column.from_qual)
    elif column.from_matrix:
        value = getattr(row.entry, column.from_matrix, None) if row.entry else None
    elif column.hydrate is None:
        value = _from_item(column, row.item)
    else:
        value = None if column.from_value else _from_item(column, row.item)
        if value is None and row.has_result(column.hydrate):
            value = _from_item(column, row.result(column.hydrate))

    for transform in column.transforms:
        if value is None:
            break
        value = transform(value)

    try:
        return coerce(value, column.type)
    except (TypeError, ValueError) as exc:
        logger.warning(
            "column_value_coercion_failed",
            table=ctx.table.name,
            column=column.name,
            column_type=column.type.value,
            error=str(exc),
        )
        return None


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # millisecond epochs are common in AWS responses
        seconds = value / 1000 if abs(value) > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError(f"cannot convert {type(value).__name__} to timestamp")


def coerce(value: Any, column_type: ColumnType) -> Any:
    """Convert a resolved value to the declared column type; None stays None."""
    if value is None:
        return None
    if column_type == ColumnType.STRING:
        if isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)
    if column_type == ColumnType.INT:
        if isinstance(value, str):
            return int(float(value)) if "." in value else int(value)
        return int(value)
    if column_type == ColumnType.DOUBLE:
        return float(value)
    if column_type == ColumnType.BOOL:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "t", "yes", "1"):
                return True
            if lowered in ("false", "f", "no", "0", ""):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        return bool(value)
    if column_type == ColumnType.TIMESTAMP:
        return _to_datetime(value)
    if column_type == ColumnType.STRING_ARRAY:
        if isinstance(value, (list, tuple, set)):
            return [str(v) for v in value]
        return [str(value)]
    return value
