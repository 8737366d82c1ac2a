from typing import Callable, Iterable, Iterator, Optional, Union

import structlog

from cloudtables.services.tables.definitions import TableDefinition
from cloudtables.services.tables.hydrate import HydratePlan
from cloudtables.services.tables.quals import SUPPORTED_OPERATORS
from cloudtables.shared.core.config import get_settings
from cloudtables.shared.core.exceptions import TableDefinitionError, TableNotFoundError

logger = structlog.get_logger()

TableFactory = Callable[[], TableDefinition]


class TableRegistry:
    """
    Catalogue of table definitions.

    Tables are registered at import time and validated once by `build()`:
    hydrate dependency graphs, parent links and key columns are checked there
    so a scan never discovers a malformed table mid-flight. `build()` also
    records every code any table declares in `ignore_codes`; that union is a
    catalogue for logging only. Classification uses `default_ignore_codes`
    plus the codes of the table being scanned.
    """

    def __init__(self, default_ignore_codes: Optional[Iterable[str]] = None):
        if default_ignore_codes is None:
            default_ignore_codes = get_settings().DEFAULT_IGNORE_ERROR_CODES
        self._default_ignore = frozenset(default_ignore_codes)
        self._tables: dict[str, TableDefinition] = {}
        self._plans: dict[str, HydratePlan] = {}
        self.ignore_codes: frozenset[str] = self._default_ignore
        self.built = False

    @property
    def default_ignore_codes(self) -> frozenset[str]:
        return self._default_ignore

    def register(self, table: Union[TableDefinition, TableFactory]) -> Union[TableDefinition, TableFactory]:
        """Register a definition, or a zero-argument factory returning one (usable as a decorator)."""
        definition = table if isinstance(table, TableDefinition) else table()
        if definition.name in self._tables:
            raise TableDefinitionError(
                f"Table {definition.name} is registered twice",
                details={"table": definition.name},
            )
        self._tables[definition.name] = definition
        self.built = False
        return table

    def build(self) -> "TableRegistry":
        codes = set(self._default_ignore)
        for definition in self._tables.values():
            self._validate(definition)
            self._plans[definition.name] = HydratePlan(definition)
            codes.update(definition.all_ignore_codes)
        self.ignore_codes = frozenset(codes)
        self.built = True
        logger.info(
            "table_registry_built",
            tables=len(self._tables),
            ignore_codes=sorted(self.ignore_codes),
        )
        return self

    def _validate(self, table: TableDefinition) -> None:
        def fail(reason: str) -> None:
            raise TableDefinitionError(f"{table.name}: {reason}", details={"table": table.name})

        names = table.column_names
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            fail(f"duplicate columns {duplicates}")
        if table.list_config is None and table.get_config is None:
            fail("needs a list or a get operation")

        if table.get_config is not None:
            for key in table.get_config.key_columns:
                if table.column(key) is None:
                    fail(f"get key column {key} is not a column")

        if table.list_config is not None:
            for key in table.list_config.key_columns:
                if table.column(key.name) is None:
                    fail(f"list key column {key.name} is not a column")
            self._validate_parents(table)

        for column in table.columns:
            if column.pushdown is not None:
                unknown = set(column.pushdown.operators) - SUPPORTED_OPERATORS
                if unknown:
                    fail(f"column {column.name} pushes unsupported operators {sorted(unknown)}")
            if column.from_qual and table.column(column.from_qual) is None:
                fail(f"column {column.name} echoes unknown qual {column.from_qual}")

    def _validate_parents(self, table: TableDefinition) -> None:
        seen = [table.name]
        current = table
        while current.list_config is not None and current.list_config.parent:
            parent_name = current.list_config.parent
            if parent_name in seen:
                raise TableDefinitionError(
                    f"{table.name}: parent cycle {' -> '.join(seen + [parent_name])}",
                    details={"table": table.name},
                )
            parent = self._tables.get(parent_name)
            if parent is None or parent.list_config is None:
                raise TableDefinitionError(
                    f"{table.name}: parent {parent_name} is not a listable table",
                    details={"table": table.name, "parent": parent_name},
                )
            if parent.list_config.required_columns:
                raise TableDefinitionError(
                    f"{table.name}: parent {parent_name} cannot require key columns",
                    details={"table": table.name, "parent": parent_name},
                )
            seen.append(parent_name)
            current = parent

    def get(self, name: str) -> TableDefinition:
        try:
            return self._tables[name]
        except KeyError:
            raise TableNotFoundError(name) from None

    def plan(self, name: str) -> HydratePlan:
        if not self.built:
            self.build()
        if name not in self._plans:
            raise TableNotFoundError(name)
        return self._plans[name]

    def names(self) -> list[str]:
        return sorted(self._tables)

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def __iter__(self) -> Iterator[TableDefinition]:
        return iter(self._tables[n] for n in self.names())

    def __len__(self) -> int:
        return len(self._tables)
