"""
Table Router

Endpoints:
- GET /tables - List registered tables
- GET /tables/{name} - Columns, key columns and pushdown support of one table
- POST /tables/{name}/scan - Stream the rows of a scan as NDJSON
"""

import json
from functools import lru_cache
from typing import Annotated, Any, AsyncIterator, List

import structlog
from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from cloudtables.schemas.scan import ScanRequest, TableDetail, TableSummary
from cloudtables.services.tables.registry import TableRegistry
from cloudtables.services.tables.scanner import ScanStream, TableScanner
from cloudtables.shared.core.exceptions import CloudTablesException
from cloudtables.tables import get_table_registry

logger = structlog.get_logger()
router = APIRouter(prefix="/tables", tags=["tables"])

NDJSON = "application/x-ndjson"


@lru_cache
def get_table_scanner() -> TableScanner:
    """One scanner per process for the default connection; its caller identity cache is reused."""
    return TableScanner(get_table_registry())


def _line(payload: Any) -> bytes:
    return (json.dumps(jsonable_encoder(payload), separators=(",", ":")) + "\n").encode("utf-8")


async def _ndjson(stream: ScanStream) -> AsyncIterator[bytes]:
    try:
        async for row in stream:
            yield _line(row)
    except CloudTablesException as exc:
        logger.warning(
            "table_scan_stream_aborted",
            table=stream.table.name,
            code=exc.code,
            rows_emitted=stream.stats.rows_emitted,
        )
        yield _line({"error": {"code": exc.code, "message": exc.message, "details": exc.details}})
    finally:
        # stops a scan the client abandoned; no-op once it has finished
        stream.cancel("client disconnected")


@router.get("", response_model=List[TableSummary])
async def list_tables(
    registry: Annotated[TableRegistry, Depends(get_table_registry)],
) -> List[TableSummary]:
    return [TableSummary.from_table(table) for table in registry]


@router.get("/{name}", response_model=TableDetail)
async def get_table(
    name: str,
    registry: Annotated[TableRegistry, Depends(get_table_registry)],
) -> TableDetail:
    return TableDetail.from_table(registry.get(name))


@router.post("/{name}/scan")
async def scan_table(
    name: str,
    body: ScanRequest,
    scanner: Annotated[TableScanner, Depends(get_table_scanner)],
) -> StreamingResponse:
    """
    Rows stream as they are produced, one JSON object per line. Unknown
    tables, columns and missing required quals fail before streaming starts;
    a provider failure mid-scan ends the stream with an {"error": ...} line.
    """
    stream = scanner.scan(
        name,
        columns=body.columns,
        quals=[q.model_dump() for q in body.quals],
        limit=body.limit,
    )
    logger.info("table_scan_requested", table=name, quals=len(body.quals), limit=body.limit)
    return StreamingResponse(_ndjson(stream), media_type=NDJSON)
