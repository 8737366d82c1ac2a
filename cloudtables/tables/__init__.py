from functools import lru_cache

from cloudtables.services.tables.registry import TableRegistry
from cloudtables.tables.aws import AWS_TABLES


@lru_cache
def get_table_registry() -> TableRegistry:
    """Process-wide registry of every built-in table, validated once."""
    registry = TableRegistry()
    for factory in AWS_TABLES:
        registry.register(factory)
    return registry.build()
