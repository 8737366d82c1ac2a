import asyncio
from collections import Counter

import pytest
from botocore.exceptions import ClientError

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
from cloudtables.services.tables.matrix import all_region_matrix, supported_region_matrix
from cloudtables.services.tables.paginator import PageSpec
from cloudtables.services.tables.registry import TableRegistry
from cloudtables.services.tables.scanner import TableScanner
from cloudtables.shared.adapters.aws_utils import AWSConnectionConfig
from cloudtables.shared.core.exceptions import (
    MissingKeyColumnError,
    ScanAbortedError,
    TableNotFoundError,
    UnknownColumnError,
)


def client_error(code, status=400):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "Widgets",
    )


class WidgetApi:
    """In-memory widget service with fixed-size pages and failure switches."""

    def __init__(
        self,
        widgets=None,
        parts=None,
        page_size=2,
        fail_on_page=None,
        fail_with=("AccessDenied", 403),
        throttle_first=0,
        missing=(),
    ):
        if widgets is None:
            widgets = [{"Id": "w1", "Name": "alpha", "Color": "red"}, {"Id": "w2", "Name": "beta", "Color": "blue"}]
        self.widgets = widgets
        self.parts = parts or {}
        self.page_size = page_size
        self.fail_on_page = fail_on_page
        self.fail_with = fail_with
        self.throttle_remaining = throttle_first
        self.missing = set(missing)
        self.calls = Counter()
        self.requests = []

    async def list_widgets(self, **kwargs):
        self.calls["list_widgets"] += 1
        self.requests.append(kwargs)
        if self.throttle_remaining:
            self.throttle_remaining -= 1
            raise client_error("Throttling")
        widgets = self.widgets
        for f in kwargs.get("Filters", []):
            widgets = [w for w in widgets if w.get("Color") in f["Values"]]
        start = int(kwargs.get("NextToken") or 0)
        if self.fail_on_page is not None and start // self.page_size == self.fail_on_page:
            raise client_error(*self.fail_with)
        end = start + min(self.page_size, kwargs.get("MaxResults") or self.page_size)
        response = {"Widgets": widgets[start:end]}
        if end < len(widgets):
            response["NextToken"] = str(end)
        return response

    async def describe_widget(self, WidgetId):
        self.calls["describe_widget"] += 1
        if WidgetId in self.missing:
            raise client_error("WidgetNotFound", 404)
        return next(w for w in self.widgets if w["Id"] == WidgetId)

    async def get_widget_size(self, WidgetId):
        self.calls["get_widget_size"] += 1
        if WidgetId in self.missing:
            raise client_error("WidgetNotFound", 404)
        return {"Size": len(WidgetId) * 10}

    async def list_parts(self, WidgetId):
        self.calls["list_parts"] += 1
        return {"Parts": [{"PartId": p} for p in self.parts.get(WidgetId, [])]}


class GadgetApi:
    def __init__(self):
        self.calls = Counter()

    async def list_gadgets(self, **kwargs):
        self.calls["list_gadgets"] += 1
        return {"Gadgets": [{"Id": "g1"}]}


WIDGET_PAGES = PageSpec(items="Widgets", max_page_size=100)


async def list_widgets(ctx, parent):
    api = await ctx.client("widgets")
    request = {}
    filters = ctx.filter.as_filters()
    if filters:
        request["Filters"] = filters
    async for widget in ctx.paginate(api.list_widgets, request, WIDGET_PAGES):
        yield widget


async def get_widget(ctx, row):
    widget_id = ctx.equals_qual("id")
    if not widget_id:
        return None
    api = await ctx.client("widgets")
    return await ctx.call(api.describe_widget, WidgetId=widget_id)


async def get_widget_size(ctx, row):
    api = await ctx.client("widgets")
    return await ctx.call(api.get_widget_size, WidgetId=row.item["Id"])


async def list_parts(ctx, widget):
    api = await ctx.client("widgets")
    response = await ctx.call(api.list_parts, WidgetId=widget["Id"])
    for part in response["Parts"]:
        yield {"WidgetId": widget["Id"], **part}


async def list_gadgets(ctx, parent):
    api = await ctx.client("gadgets")
    response = await ctx.call(api.list_gadgets)
    for gadget in response["Gadgets"]:
        yield gadget


async def list_events(ctx, parent):
    stream = ctx.equals_qual("stream")
    yield {"Message": f"hello from {stream}"}


def widget_tables():
    widget = TableDefinition(
        name="aws_widget",
        description="Widget",
        matrix=supported_region_matrix("widgets"),
        list_config=ListConfig(func=list_widgets),
        get_config=GetConfig(func=get_widget, key_columns=("id",), ignore_codes=("WidgetNotFound",)),
        columns=(
            ColumnSpec("id", ColumnType.STRING),
            ColumnSpec("name", ColumnType.STRING),
            ColumnSpec("color", ColumnType.STRING, pushdown=Pushdown("color")),
            ColumnSpec("size", ColumnType.INT, hydrate=get_widget_size),
            ColumnSpec("region", ColumnType.STRING, from_matrix="region"),
        ),
    )
    part = TableDefinition(
        name="aws_widget_part",
        description="Widget part",
        matrix=supported_region_matrix("widgets"),
        list_config=ListConfig(func=list_parts, parent="aws_widget"),
        columns=(
            ColumnSpec("part_id", ColumnType.STRING),
            ColumnSpec("widget_id", ColumnType.STRING),
        ),
    )
    gadget = TableDefinition(
        name="aws_gadget",
        description="Gadget",
        matrix=supported_region_matrix("gadgets"),
        list_config=ListConfig(func=list_gadgets),
        columns=(ColumnSpec("id", ColumnType.STRING), ColumnSpec("region", ColumnType.STRING, from_matrix="region")),
    )
    gadget_everywhere = TableDefinition(
        name="aws_gadget_everywhere",
        description="Gadget in every configured region",
        matrix=all_region_matrix,
        list_config=ListConfig(func=list_gadgets),
        columns=(ColumnSpec("id", ColumnType.STRING), ColumnSpec("region", ColumnType.STRING, from_matrix="region")),
    )
    gizmo = TableDefinition(
        name="aws_gizmo",
        description="Get-only table",
        get_config=GetConfig(func=get_widget, key_columns=("id",)),
        columns=(ColumnSpec("id", ColumnType.STRING),),
    )
    event = TableDefinition(
        name="aws_widget_event",
        description="Events of one stream",
        list_config=ListConfig(func=list_events, key_columns=(KeyColumn("stream", require=Require.REQUIRED),)),
        columns=(
            ColumnSpec("stream", ColumnType.STRING, from_qual="stream"),
            ColumnSpec("message", ColumnType.STRING),
        ),
    )
    return [widget, part, gadget, gadget_everywhere, gizmo, event]


@pytest.fixture
def registry():
    registry = TableRegistry(default_ignore_codes=[])
    for definition in widget_tables():
        registry.register(definition)
    return registry.build()


@pytest.fixture
def scanner_for(registry, catalog, connection, make_provider):
    def build(api=None, gadgets=None, parallelism=1, regions=None):
        provider, client_factory = make_provider({"widgets": api or WidgetApi(), "gadgets": gadgets or GadgetApi()})
        conn = connection
        if regions is not None:
            conn = AWSConnectionConfig(default_region="us-east-1", regions=regions)
        scanner = TableScanner(
            registry,
            conn,
            catalog=catalog,
            client_factory=client_factory,
            parallelism=parallelism,
        )
        return scanner, provider

    return build


@pytest.mark.asyncio
async def test_projection_without_hydrate_column_skips_hydrate(scanner_for):
    api = WidgetApi()
    scanner, provider = scanner_for(api)

    rows = await scanner.scan("aws_widget", columns=["id"]).collect()

    assert rows == [{"id": "w1"}, {"id": "w2"}]
    assert api.calls["get_widget_size"] == 0
    assert provider.closed is True


@pytest.mark.asyncio
async def test_projected_hydrate_column_runs_once_per_row(scanner_for):
    api = WidgetApi()
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id", "size"])
    rows = await stream.collect()

    assert rows == [{"id": "w1", "size": 20}, {"id": "w2", "size": 20}]
    assert api.calls["get_widget_size"] == 2
    assert stream.stats.hydrate_calls == {"get_widget_size": 2}


@pytest.mark.asyncio
async def test_all_columns_by_default(scanner_for):
    scanner, _ = scanner_for()
    stream = scanner.scan("aws_widget")
    rows = await stream.collect()
    assert stream.columns == ["id", "name", "color", "size", "region"]
    assert rows[0] == {"id": "w1", "name": "alpha", "color": "red", "size": 20, "region": "us-east-1"}


@pytest.mark.asyncio
async def test_limit_stops_paging_once_rows_are_used_up(scanner_for):
    widgets = [{"Id": f"w{i}", "Name": f"n{i}", "Color": "red"} for i in range(5)]
    api = WidgetApi(widgets=widgets)
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id"], limit=3)
    rows = await stream.collect()

    assert [r["id"] for r in rows] == ["w0", "w1", "w2"]
    assert api.calls["list_widgets"] == 2
    assert api.requests[0]["MaxResults"] == 3
    assert stream.stats.rows_emitted == 3


@pytest.mark.asyncio
async def test_post_filtered_limit_pages_at_full_size(scanner_for):
    widgets = [{"Id": f"w{i}", "Name": f"n{i}", "Color": "red"} for i in range(50)]
    api = WidgetApi(widgets=widgets, page_size=100)
    scanner, _ = scanner_for(api)

    rows = await scanner.scan("aws_widget", columns=["id"], quals=[("name", "=", "n49")], limit=1).collect()

    assert rows == [{"id": "w49"}]
    assert api.calls["list_widgets"] == 1
    assert api.requests[0]["MaxResults"] == 100


@pytest.mark.asyncio
async def test_dropped_row_stops_page_shrinking(scanner_for):
    widgets = [{"Id": f"w{i}", "Color": "red"} for i in range(6)]
    api = WidgetApi(widgets=widgets, page_size=100, missing={"w0"})
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id", "size"], limit=2)
    rows = await stream.collect()

    assert rows == [{"id": "w1", "size": 20}, {"id": "w2", "size": 20}]
    assert [r["MaxResults"] for r in api.requests] == [2, 100]
    assert stream.stats.rows_dropped == 1


@pytest.mark.asyncio
async def test_limit_holds_across_parallel_entries(scanner_for):
    widgets = [{"Id": f"w{i}", "Name": f"n{i}", "Color": "red"} for i in range(5)]
    scanner, _ = scanner_for(WidgetApi(widgets=widgets), parallelism=4, regions=["*"])

    stream = scanner.scan("aws_widget", columns=["id", "region"], limit=3)
    rows = await stream.collect()

    assert len(rows) == 3
    assert stream.stats.rows_emitted == 3
    assert stream.stats.matrix_entries == 4


@pytest.mark.asyncio
async def test_limit_zero_makes_no_calls(scanner_for):
    api = WidgetApi()
    scanner, provider = scanner_for(api)
    assert await scanner.scan("aws_widget", limit=0).collect() == []
    assert api.calls == Counter()
    assert provider.opened == []


@pytest.mark.asyncio
async def test_parallel_entries_cover_every_region(scanner_for):
    scanner, _ = scanner_for(parallelism=3, regions=["*"])
    rows = await scanner.scan("aws_widget", columns=["id", "region"]).collect()
    assert sorted((r["region"], r["id"]) for r in rows) == sorted(
        (region, wid)
        for region in ("us-east-1", "us-west-2", "eu-west-1", "cn-north-1")
        for wid in ("w1", "w2")
    )


@pytest.mark.asyncio
async def test_equality_qual_is_pushed_to_provider(scanner_for):
    api = WidgetApi()
    scanner, _ = scanner_for(api)

    rows = await scanner.scan("aws_widget", columns=["id"], quals=[("color", "=", "red")]).collect()

    assert rows == [{"id": "w1"}]
    assert api.requests[0]["Filters"] == [{"Name": "color", "Values": ["red"]}]


@pytest.mark.asyncio
async def test_unpushable_qual_is_post_filtered(scanner_for):
    api = WidgetApi()
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id"], quals=[("name", "=", "beta")])
    rows = await stream.collect()

    assert rows == [{"id": "w2"}]
    assert "Filters" not in api.requests[0]
    assert stream.stats.rows_filtered == 1


@pytest.mark.asyncio
async def test_post_filter_on_hydrate_column_hydrates_outside_projection(scanner_for):
    api = WidgetApi(widgets=[{"Id": "w1"}, {"Id": "w22"}])
    scanner, _ = scanner_for(api)

    rows = await scanner.scan("aws_widget", columns=["id"], quals=[("size", ">", 25)]).collect()

    assert rows == [{"id": "w22"}]
    assert api.calls["get_widget_size"] == 2


@pytest.mark.asyncio
async def test_children_are_listed_for_every_parent(scanner_for):
    api = WidgetApi(parts={"w1": ["p1", "p2"], "w2": ["p3"]})
    scanner, _ = scanner_for(api)

    rows = await scanner.scan("aws_widget_part").collect()

    assert rows == [
        {"part_id": "p1", "widget_id": "w1"},
        {"part_id": "p2", "widget_id": "w1"},
        {"part_id": "p3", "widget_id": "w2"},
    ]
    assert api.calls["list_parts"] == 2


@pytest.mark.asyncio
async def test_children_fan_out_in_parallel(scanner_for):
    api = WidgetApi(parts={"w1": ["p1", "p2"], "w2": ["p3"]})
    scanner, _ = scanner_for(api, parallelism=3)

    rows = await scanner.scan("aws_widget_part", columns=["part_id"]).collect()

    assert sorted(r["part_id"] for r in rows) == ["p1", "p2", "p3"]


@pytest.mark.asyncio
async def test_child_quals_do_not_reach_the_parent_listing(scanner_for):
    api = WidgetApi(parts={"w1": ["p1"], "w2": ["p2"]})
    scanner, _ = scanner_for(api)

    rows = await scanner.scan("aws_widget_part", quals=[("part_id", "=", "p2")]).collect()

    assert rows == [{"part_id": "p2", "widget_id": "w2"}]
    assert "Filters" not in api.requests[0]


@pytest.mark.asyncio
async def test_get_mode_calls_get_only(scanner_for):
    api = WidgetApi()
    scanner, _ = scanner_for(api)

    rows = await scanner.scan("aws_widget", columns=["id", "name"], quals=[("id", "=", "w2")]).collect()

    assert rows == [{"id": "w2", "name": "beta"}]
    assert api.calls["describe_widget"] == 1
    assert api.calls["list_widgets"] == 0


@pytest.mark.asyncio
async def test_get_not_found_returns_no_rows(scanner_for):
    api = WidgetApi(missing={"w2"})
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", quals=[("id", "=", "w2")])

    assert await stream.collect() == []
    assert stream.error is None


@pytest.mark.asyncio
async def test_list_valued_key_falls_back_to_listing(scanner_for):
    api = WidgetApi()
    scanner, _ = scanner_for(api)

    rows = await scanner.scan("aws_widget", columns=["id"], quals=[("id", "=", ["w1", "w2"])]).collect()

    assert rows == [{"id": "w1"}, {"id": "w2"}]
    assert api.calls["describe_widget"] == 0


@pytest.mark.asyncio
async def test_get_only_table_without_key_returns_nothing(scanner_for):
    api = WidgetApi()
    scanner, provider = scanner_for(api)

    assert await scanner.scan("aws_gizmo").collect() == []
    assert api.calls == Counter()
    assert provider.opened == []


@pytest.mark.asyncio
async def test_hydrate_not_found_drops_the_row(scanner_for):
    api = WidgetApi(missing={"w1"})
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id", "size"])
    rows = await stream.collect()

    assert rows == [{"id": "w2", "size": 20}]
    assert stream.stats.rows_dropped == 1


@pytest.mark.asyncio
async def test_unsupported_region_makes_no_calls(scanner_for):
    gadgets = GadgetApi()
    scanner, provider = scanner_for(gadgets=gadgets, regions=["eu-west-1"])

    assert await scanner.scan("aws_gadget").collect() == []
    assert gadgets.calls == Counter()
    assert provider.opened == []


@pytest.mark.asyncio
async def test_unsupported_entry_is_skipped_not_fatal(scanner_for):
    gadgets = GadgetApi()
    scanner, _ = scanner_for(gadgets=gadgets, regions=["us-east-1", "eu-west-1"])

    stream = scanner.scan("aws_gadget_everywhere")
    rows = await stream.collect()

    assert rows == [{"id": "g1", "region": "us-east-1"}]
    assert stream.stats.skipped_entries == 1
    assert stream.error is None


@pytest.mark.asyncio
async def test_throttled_call_is_retried(scanner_for):
    api = WidgetApi(throttle_first=1)
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id"])
    rows = await stream.collect()

    assert [r["id"] for r in rows] == ["w1", "w2"]
    assert stream.stats.retries == 1
    assert api.calls["list_widgets"] == 2


@pytest.mark.asyncio
async def test_fatal_error_arrives_after_rows_already_emitted(scanner_for):
    widgets = [{"Id": f"w{i}"} for i in range(4)]
    api = WidgetApi(widgets=widgets, fail_on_page=1)
    scanner, provider = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id"])
    rows = []
    with pytest.raises(ScanAbortedError) as excinfo:
        async for row in stream:
            rows.append(row)

    assert rows == [{"id": "w0"}, {"id": "w1"}]
    assert excinfo.value.provider_code == "AccessDenied"
    assert stream.error is excinfo.value
    assert provider.closed is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code, status, error_class",
    [("Throttling", 400, "throttled"), ("ServiceUnavailable", 503, "transient")],
)
async def test_exhausted_retries_abort_after_rows_already_emitted(scanner_for, code, status, error_class):
    widgets = [{"Id": f"w{i}"} for i in range(4)]
    api = WidgetApi(widgets=widgets, fail_on_page=1, fail_with=(code, status))
    scanner, _ = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id"])
    rows = []
    with pytest.raises(ScanAbortedError) as excinfo:
        async for row in stream:
            rows.append(row)

    assert rows == [{"id": "w0"}, {"id": "w1"}]
    assert excinfo.value.error_class == error_class
    assert excinfo.value.provider_code == code
    assert api.calls["list_widgets"] == 1 + scanner.settings.RETRY_MAX_ATTEMPTS


@pytest.mark.asyncio
async def test_closing_the_stream_early_ends_quietly(scanner_for):
    widgets = [{"Id": f"w{i}"} for i in range(10)]
    api = WidgetApi(widgets=widgets)
    scanner, provider = scanner_for(api)

    stream = scanner.scan("aws_widget", columns=["id"])
    rows = stream.__aiter__()
    first = await rows.__anext__()
    await rows.aclose()

    assert first == {"id": "w0"}
    assert stream.stats.cancelled is True
    assert stream.error is None
    assert provider.closed is True
    assert api.calls["list_widgets"] < 5


@pytest.mark.asyncio
async def test_cancel_from_consumer_stops_iteration(scanner_for):
    widgets = [{"Id": f"w{i}"} for i in range(10)]
    scanner, _ = scanner_for(WidgetApi(widgets=widgets), parallelism=2, regions=["*"])

    stream = scanner.scan("aws_widget", columns=["id"])
    seen = []
    async for row in stream:
        seen.append(row)
        stream.cancel()

    assert len(seen) == 1
    assert stream.stats.cancelled is True
    assert stream.error is None


@pytest.mark.asyncio
async def test_stream_iterates_once(scanner_for):
    scanner, _ = scanner_for()
    stream = scanner.scan("aws_widget", columns=["id"])
    await stream.collect()
    with pytest.raises(RuntimeError):
        await stream.collect()


@pytest.mark.asyncio
async def test_required_key_column(scanner_for):
    scanner, _ = scanner_for()

    with pytest.raises(MissingKeyColumnError):
        scanner.scan("aws_widget_event")

    rows = await scanner.scan("aws_widget_event", quals=[("stream", "=", "s1")]).collect()
    assert rows == [{"stream": "s1", "message": "hello from s1"}]


def test_unknown_columns_and_tables_are_rejected_up_front(scanner_for):
    scanner, _ = scanner_for()
    with pytest.raises(UnknownColumnError):
        scanner.scan("aws_widget", columns=["id", "weight"])
    with pytest.raises(UnknownColumnError):
        scanner.scan("aws_widget", quals=[("weight", ">", 1)])
    with pytest.raises(TableNotFoundError):
        scanner.scan("aws_sprocket")


def test_parallelism_must_be_positive(registry, catalog, connection):
    with pytest.raises(ValueError):
        TableScanner(registry, connection, catalog=catalog, parallelism=-1)


@pytest.mark.asyncio
async def test_concurrent_scans_are_independent(scanner_for):
    scanner, _ = scanner_for()
    first, second = await asyncio.gather(
        scanner.scan("aws_widget", columns=["id"]).collect(),
        scanner.scan("aws_widget", columns=["id"], limit=1).collect(),
    )
    assert len(first) == 2
    assert len(second) == 1
