import pytest

from cloudtables.services.tables.definitions import (
    ColumnSpec,
    ColumnType,
    GetConfig,
    KeyColumn,
    ListConfig,
    Pushdown,
    Require,
    TableDefinition,
)
from cloudtables.services.tables.registry import TableRegistry
from cloudtables.shared.core.exceptions import TableDefinitionError, TableNotFoundError


async def list_items(ctx, parent):
    return
    yield


async def get_item(ctx, row):
    return None


def table(name="aws_widget", *, columns=None, list_config=None, get_config=None, **kwargs):
    return TableDefinition(
        name=name,
        description=name,
        columns=columns or (ColumnSpec("id", ColumnType.STRING), ColumnSpec("name", ColumnType.STRING)),
        list_config=list_config,
        get_config=get_config,
        **kwargs,
    )


def test_register_factory_and_lookup():
    registry = TableRegistry(default_ignore_codes=[])

    @registry.register
    def table_aws_widget():
        return table(list_config=ListConfig(func=list_items))

    registry.build()
    assert "aws_widget" in registry
    assert registry.names() == ["aws_widget"]
    assert registry.get("aws_widget").name == "aws_widget"
    assert len(registry) == 1


def test_unknown_table_raises():
    registry = TableRegistry(default_ignore_codes=[]).build()
    with pytest.raises(TableNotFoundError):
        registry.get("aws_nothing")


def test_duplicate_registration_rejected():
    registry = TableRegistry(default_ignore_codes=[])
    registry.register(table(list_config=ListConfig(func=list_items)))
    with pytest.raises(TableDefinitionError):
        registry.register(table(list_config=ListConfig(func=list_items)))


def test_build_catalogues_table_codes_apart_from_defaults():
    registry = TableRegistry(default_ignore_codes=["NoSuchEntity"])
    registry.register(
        table(
            list_config=ListConfig(func=list_items, ignore_codes=("WidgetGone",)),
            get_config=GetConfig(func=get_item, key_columns=("id",), ignore_codes=("WidgetMissing",)),
        )
    )
    registry.build()
    assert registry.ignore_codes == frozenset({"NoSuchEntity", "WidgetGone", "WidgetMissing"})
    assert registry.default_ignore_codes == frozenset({"NoSuchEntity"})


@pytest.mark.parametrize(
    "definition",
    [
        pytest.param(
            table(
                columns=(ColumnSpec("id", ColumnType.STRING), ColumnSpec("id", ColumnType.INT)),
                list_config=ListConfig(func=list_items),
            ),
            id="duplicate-column",
        ),
        pytest.param(table(), id="no-operations"),
        pytest.param(
            table(get_config=GetConfig(func=get_item, key_columns=("missing",))),
            id="unknown-get-key",
        ),
        pytest.param(
            table(list_config=ListConfig(func=list_items, key_columns=(KeyColumn("missing"),))),
            id="unknown-list-key",
        ),
        pytest.param(
            table(
                columns=(ColumnSpec("id", ColumnType.STRING, pushdown=Pushdown("id", operators=("~",))),),
                list_config=ListConfig(func=list_items),
            ),
            id="bad-pushdown-operator",
        ),
        pytest.param(
            table(
                columns=(ColumnSpec("echo", ColumnType.STRING, from_qual="missing"),),
                list_config=ListConfig(func=list_items),
            ),
            id="unknown-from-qual",
        ),
        pytest.param(
            table(list_config=ListConfig(func=list_items, parent="aws_ghost")),
            id="unknown-parent",
        ),
    ],
)
def test_build_rejects_malformed_tables(definition):
    registry = TableRegistry(default_ignore_codes=[])
    registry.register(definition)
    with pytest.raises(TableDefinitionError):
        registry.build()


def test_build_rejects_parent_cycle():
    registry = TableRegistry(default_ignore_codes=[])
    registry.register(table("aws_a", list_config=ListConfig(func=list_items, parent="aws_b")))
    registry.register(table("aws_b", list_config=ListConfig(func=list_items, parent="aws_a")))
    with pytest.raises(TableDefinitionError):
        registry.build()


def test_build_rejects_parent_with_required_keys():
    registry = TableRegistry(default_ignore_codes=[])
    registry.register(
        table(
            "aws_parent",
            list_config=ListConfig(func=list_items, key_columns=(KeyColumn("id", require=Require.REQUIRED),)),
        )
    )
    registry.register(table("aws_child", list_config=ListConfig(func=list_items, parent="aws_parent")))
    with pytest.raises(TableDefinitionError):
        registry.build()


def test_builtin_tables_build():
    from cloudtables.tables import get_table_registry

    registry = get_table_registry()
    assert registry.built
    assert "aws_lambda_alias" in registry
    assert registry.get("aws_lambda_alias").list_config.parent == "aws_lambda_function"
    assert "InvalidInstanceID.NotFound" in registry.ignore_codes
