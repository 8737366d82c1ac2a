"""
Tests for the table catalogue and NDJSON scan endpoints.
"""
import json

import pytest
from botocore.exceptions import ClientError
from httpx import AsyncClient

from cloudtables.api.v1.tables import get_table_scanner
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
from cloudtables.services.tables.scanner import TableScanner
from cloudtables.tables import get_table_registry

WIDGETS = [
    {"Id": "w1", "Color": "red", "Size": 3},
    {"Id": "w2", "Color": "blue", "Size": 8},
    {"Id": "w3", "Color": "red", "Size": 5},
]


async def list_widgets(ctx, parent):
    colors = ctx.filter.values("color")
    for widget in WIDGETS:
        if not colors or widget["Color"] in colors:
            yield widget


async def list_broken_widgets(ctx, parent):
    yield WIDGETS[0]
    raise ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "not allowed"}, "ResponseMetadata": {"HTTPStatusCode": 403}},
        "ListWidgets",
    )


async def get_widget(ctx, row):
    widget_id = ctx.equals_qual("id")
    return next((w for w in WIDGETS if w["Id"] == widget_id), None)


async def list_events(ctx, parent):
    yield {"Message": "hello"}


def _columns():
    return (
        ColumnSpec("id", ColumnType.STRING, "Widget id."),
        ColumnSpec("color", ColumnType.STRING, "Widget color.", pushdown=Pushdown("color")),
        ColumnSpec("size", ColumnType.INT, "Widget size."),
    )


@pytest.fixture
def widget_registry():
    registry = TableRegistry(default_ignore_codes=[])
    registry.register(
        TableDefinition(
            name="aws_widget",
            description="Widgets",
            list_config=ListConfig(func=list_widgets),
            get_config=GetConfig(func=get_widget, key_columns=("id",)),
            columns=_columns(),
        )
    )
    registry.register(
        TableDefinition(
            name="aws_broken_widget",
            description="Widgets behind a denied call",
            list_config=ListConfig(func=list_broken_widgets),
            columns=_columns(),
        )
    )
    registry.register(
        TableDefinition(
            name="aws_widget_event",
            description="Widget events",
            list_config=ListConfig(func=list_events, key_columns=(KeyColumn("stream", require=Require.REQUIRED),)),
            columns=(
                ColumnSpec("stream", ColumnType.STRING, from_qual="stream"),
                ColumnSpec("message", ColumnType.STRING),
            ),
        )
    )
    return registry.build()


@pytest.fixture
def widget_api(app, widget_registry, catalog, connection, make_provider):
    _, client_factory = make_provider({})
    scanner = TableScanner(widget_registry, connection, catalog=catalog, client_factory=client_factory)
    app.dependency_overrides[get_table_registry] = lambda: widget_registry
    app.dependency_overrides[get_table_scanner] = lambda: scanner
    return scanner


def ndjson(response):
    return [json.loads(line) for line in response.text.splitlines() if line]


class TestCatalogue:
    @pytest.mark.asyncio
    async def test_list_tables(self, ac: AsyncClient, widget_api):
        response = await ac.get("/api/v1/tables")

        assert response.status_code == 200
        tables = {t["name"]: t for t in response.json()}
        assert set(tables) == {"aws_widget", "aws_broken_widget", "aws_widget_event"}
        assert tables["aws_widget"]["gettable"] is True
        assert tables["aws_widget"]["get_key_columns"] == ["id"]
        assert tables["aws_widget_event"]["required_key_columns"] == ["stream"]

    @pytest.mark.asyncio
    async def test_table_detail(self, ac: AsyncClient, widget_api):
        response = await ac.get("/api/v1/tables/aws_widget")

        assert response.status_code == 200
        columns = {c["name"]: c for c in response.json()["columns"]}
        assert columns["color"]["pushdown_operators"] == ["="]
        assert columns["size"]["type"] == "int"

    @pytest.mark.asyncio
    async def test_unknown_table_is_404(self, ac: AsyncClient, widget_api):
        response = await ac.get("/api/v1/tables/aws_nothing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "table_not_found"

    @pytest.mark.asyncio
    async def test_builtin_catalogue(self, ac: AsyncClient):
        response = await ac.get("/api/v1/tables")

        assert response.status_code == 200
        names = {t["name"] for t in response.json()}
        assert {"aws_ec2_instance", "aws_lambda_alias", "aws_sqs_queue"} <= names


class TestScan:
    @pytest.mark.asyncio
    async def test_scan_streams_ndjson_rows(self, ac: AsyncClient, widget_api):
        response = await ac.post(
            "/api/v1/tables/aws_widget/scan",
            json={"columns": ["id", "size"], "quals": [{"column": "color", "value": "red"}]},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert ndjson(response) == [{"id": "w1", "size": 3}, {"id": "w3", "size": 5}]

    @pytest.mark.asyncio
    async def test_scan_with_limit_and_range_qual(self, ac: AsyncClient, widget_api):
        response = await ac.post(
            "/api/v1/tables/aws_widget/scan",
            json={"columns": ["id"], "quals": [{"column": "size", "operator": ">", "value": 4}], "limit": 1},
        )

        assert ndjson(response) == [{"id": "w2"}]

    @pytest.mark.asyncio
    async def test_scan_get_by_key(self, ac: AsyncClient, widget_api):
        response = await ac.post(
            "/api/v1/tables/aws_widget/scan",
            json={"quals": [{"column": "id", "operator": "=", "value": "w2"}]},
        )

        assert ndjson(response) == [{"id": "w2", "color": "blue", "size": 8}]

    @pytest.mark.asyncio
    async def test_provider_failure_ends_stream_with_error_line(self, ac: AsyncClient, widget_api):
        response = await ac.post("/api/v1/tables/aws_broken_widget/scan", json={"columns": ["id"]})

        assert response.status_code == 200
        lines = ndjson(response)
        assert lines[0] == {"id": "w1"}
        assert lines[-1]["error"]["code"] == "scan_aborted"
        assert lines[-1]["error"]["details"]["provider_code"] == "AccessDenied"

    @pytest.mark.asyncio
    async def test_unknown_column_is_rejected_before_streaming(self, ac: AsyncClient, widget_api):
        response = await ac.post("/api/v1/tables/aws_widget/scan", json={"columns": ["weight"]})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "unknown_column"

    @pytest.mark.asyncio
    async def test_missing_required_qual_is_400(self, ac: AsyncClient, widget_api):
        response = await ac.post("/api/v1/tables/aws_widget_event/scan", json={})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "missing_key_column"
        assert response.json()["error"]["details"]["columns"] == ["stream"]

    @pytest.mark.asyncio
    async def test_bad_operator_is_400(self, ac: AsyncClient, widget_api):
        response = await ac.post(
            "/api/v1/tables/aws_widget/scan",
            json={"quals": [{"column": "size", "operator": "~", "value": 1}]},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"

    @pytest.mark.asyncio
    async def test_negative_limit_fails_validation(self, ac: AsyncClient, widget_api):
        response = await ac.post("/api/v1/tables/aws_widget/scan", json={"limit": -1})

        assert response.status_code == 422


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_health(self, ac: AsyncClient):
        response = await ac.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_root(self, ac: AsyncClient):
        response = await ac.get("/")

        assert response.json()["app"] == "cloudtables"
