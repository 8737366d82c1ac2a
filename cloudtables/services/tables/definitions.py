"""
Table Definitions

Declarative building blocks for resource tables: column specs, list/get
operation configs, hydrate declarations and pushdown markers. Definitions are
immutable; the registry validates them once at start-up.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Optional, Sequence

if TYPE_CHECKING:
    from cloudtables.services.tables.context import ScanContext
    from cloudtables.services.tables.hydrate import RowContext
    from cloudtables.services.tables.matrix import MatrixFunc

ListFunc = Callable[["ScanContext", Any], AsyncIterator[Any]]
HydrateFunc = Callable[["ScanContext", Optional["RowContext"]], Awaitable[Any]]
Transform = Callable[[Any], Any]


class ColumnType(str, Enum):
    STRING = "string"
    INT = "int"
    DOUBLE = "double"
    BOOL = "bool"
    TIMESTAMP = "timestamp"
    JSON = "json"
    STRING_ARRAY = "string_array"


class Combine(str, Enum):
    """How a provider filter key natively combines several values."""

    OR = "or"  # Values list, any-of (EC2/RDS Filters)
    AND = "and"  # conjunction of terms only
    ANY = "any"  # full boolean pattern language (CloudWatch Logs)
    NONE = "none"  # a single scalar


class Require(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class RateTag:
    """(service, action) pair that selects a rate budget."""

    service: str
    action: str = "*"


@dataclass(frozen=True)
class Pushdown:
    """Marks a column whose predicates can move into the provider request."""

    filter_key: str
    operators: tuple[str, ...] = ("=",)
    combine: Combine = Combine.OR
    convert: Optional[Transform] = None
    # not pushed while any of these columns carries a qual
    unless: tuple[str, ...] = ()


@dataclass(frozen=True)
class KeyColumn:
    name: str
    require: Require = Require.OPTIONAL
    operators: tuple[str, ...] = ("=",)


def hydrate_key(func: Callable[..., Any]) -> str:
    """Stable identity for a hydrate function."""
    return f"{func.__module__}.{func.__qualname__}"


@dataclass(frozen=True)
class HydrateConfig:
    func: HydrateFunc
    depends: tuple[HydrateFunc, ...] = ()
    ignore_codes: tuple[str, ...] = ()
    tag: Optional[RateTag] = None

    @property
    def key(self) -> str:
        return hydrate_key(self.func)


@dataclass(frozen=True)
class ListConfig:
    func: ListFunc
    parent: Optional[str] = None
    key_columns: tuple[KeyColumn, ...] = ()
    ignore_codes: tuple[str, ...] = ()
    tag: Optional[RateTag] = None

    @property
    def required_columns(self) -> list[str]:
        return [k.name for k in self.key_columns if k.require == Require.REQUIRED]


@dataclass(frozen=True)
class GetConfig:
    func: HydrateFunc
    key_columns: tuple[str, ...]
    ignore_codes: tuple[str, ...] = ()
    tag: Optional[RateTag] = None


_CAMEL_SPLIT = re.compile(r"_+")


def to_camel(name: str) -> str:
    """api_gateway_managed -> ApiGatewayManaged"""
    return "".join(part[:1].upper() + part[1:] for part in _CAMEL_SPLIT.split(name) if part)


@dataclass(frozen=True)
class ColumnSpec:
    """
    One column of a table.

    Value resolution, in order: `from_qual` echoes an equality qual,
    `from_matrix` reads an attribute of the matrix entry, otherwise the value
    comes from the listed item or, when absent there, from the result of
    `hydrate`. `field` lists dotted source paths (first non-null wins); it
    defaults to the CamelCase form of the column name. `from_value` takes the
    item / hydrate result itself.
    """

    name: str
    type: ColumnType
    description: str = ""
    hydrate: Optional[HydrateFunc] = None
    field: tuple[str, ...] = ()
    from_value: bool = False
    from_qual: Optional[str] = None
    from_matrix: Optional[str] = None
    transforms: tuple[Transform, ...] = ()
    pushdown: Optional[Pushdown] = None

    def __post_init__(self) -> None:
        if isinstance(self.field, str):
            object.__setattr__(self, "field", (self.field,))
        if callable(self.transforms):
            object.__setattr__(self, "transforms", (self.transforms,))

    @property
    def source_paths(self) -> tuple[str, ...]:
        return self.field or (to_camel(self.name),)

    @property
    def hydrate_only(self) -> bool:
        return self.hydrate is not None


@dataclass(frozen=True)
class TableDefinition:
    name: str
    description: str
    columns: tuple[ColumnSpec, ...]
    list_config: Optional[ListConfig] = None
    get_config: Optional[GetConfig] = None
    matrix: Optional["MatrixFunc"] = None
    hydrate: tuple[HydrateConfig, ...] = ()
    ignore_codes: tuple[str, ...] = ()
    _by_name: dict[str, ColumnSpec] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.columns, list):
            object.__setattr__(self, "columns", tuple(self.columns))
        self._by_name.update({c.name: c for c in self.columns})

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> Optional[ColumnSpec]:
        return self._by_name.get(name)

    def columns_named(self, names: Sequence[str]) -> list[ColumnSpec]:
        return [self._by_name[n] for n in names if n in self._by_name]

    @property
    def all_ignore_codes(self) -> set[str]:
        codes = set(self.ignore_codes)
        if self.list_config:
            codes.update(self.list_config.ignore_codes)
        if self.get_config:
            codes.update(self.get_config.ignore_codes)
        for cfg in self.hydrate:
            codes.update(cfg.ignore_codes)
        return codes
