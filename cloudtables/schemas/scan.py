"""
Table Scan Schemas

Request and catalogue models for the table API.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field

from cloudtables.services.tables.definitions import ColumnSpec, TableDefinition


class QualIn(BaseModel):
    """One predicate on a column."""
    column: str
    operator: str = Field(default="=", description="=, <>, <, <=, >, >= or like")
    value: Any = None


class ScanRequest(BaseModel):
    """Body of POST /tables/{name}/scan."""
    columns: Optional[List[str]] = Field(default=None, description="Projection; all columns when omitted")
    quals: List[QualIn] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=0)


class ColumnSummary(BaseModel):
    name: str
    type: str
    description: str
    hydrate: Optional[str] = None
    pushdown_operators: List[str] = Field(default_factory=list)

    @classmethod
    def from_column(cls, column: ColumnSpec) -> "ColumnSummary":
        return cls(
            name=column.name,
            type=column.type.value,
            description=column.description,
            hydrate=column.hydrate.__name__ if column.hydrate else None,
            pushdown_operators=list(column.pushdown.operators) if column.pushdown else [],
        )


class TableSummary(BaseModel):
    name: str
    description: str
    listable: bool
    gettable: bool
    parent: Optional[str] = None
    get_key_columns: List[str] = Field(default_factory=list)
    required_key_columns: List[str] = Field(default_factory=list)

    @classmethod
    def from_table(cls, table: TableDefinition) -> "TableSummary":
        list_config = table.list_config
        return cls(
            name=table.name,
            description=table.description,
            listable=list_config is not None,
            gettable=table.get_config is not None,
            parent=list_config.parent if list_config else None,
            get_key_columns=list(table.get_config.key_columns) if table.get_config else [],
            required_key_columns=list(list_config.required_columns) if list_config else [],
        )


class TableDetail(TableSummary):
    columns: List[ColumnSummary] = Field(default_factory=list)

    @classmethod
    def from_table(cls, table: TableDefinition) -> "TableDetail":
        summary = TableSummary.from_table(table)
        return cls(
            **summary.model_dump(),
            columns=[ColumnSummary.from_column(c) for c in table.columns],
        )
