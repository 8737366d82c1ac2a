from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import structlog

from cloudtables.services.tables.hydrate import extract_path

if TYPE_CHECKING:
    from cloudtables.services.tables.context import ScanContext

logger = structlog.get_logger()


@dataclass(frozen=True)
class PageSpec:
    """
    How one provider list operation pages.

    `items` is the dotted path of the item list in a response. `max_page_size`
    is the provider's ceiling for `limit_key`; some APIs take the page size as
    a string (`limit_as_string`).
    """

    items: str
    input_token: Optional[str] = "NextToken"
    output_token: Optional[str] = "NextToken"
    limit_key: Optional[str] = "MaxResults"
    max_page_size: Optional[int] = None
    min_page_size: int = 1
    limit_as_string: bool = False


def page_size(spec: PageSpec, remaining: Optional[int], default: Optional[int]) -> Optional[int]:
    """
    Smallest of the remaining row budget, the provider ceiling and the
    configured cap. None (provider default) when neither a budget nor a
    ceiling is known.
    """
    if remaining is None and spec.max_page_size is None:
        return None
    candidates = [v for v in (remaining, spec.max_page_size, default) if v is not None]
    size = min(candidates)
    return max(size, spec.min_page_size)


async def paginate(
    ctx: "ScanContext",
    call: Callable[..., Awaitable[Any]],
    request: dict[str, Any],
    spec: PageSpec,
    *,
    max_pages: Optional[int] = None,
) -> AsyncGenerator[Any, None]:
    """
    Stream the items of a token-paged provider operation.

    One request per page, each routed through `ctx.call` (rate budget, retry,
    cancellation). Stops when the provider returns no continuation token,
    repeats the token it was given, the row budget of a leaf scan is used up
    or `max_pages` is reached. The page size is recomputed from the live row
    budget before every request.
    """
    if max_pages is not None and max_pages <= 0:
        raise ValueError("max_pages must be > 0 when provided")
    if max_pages is None:
        max_pages = ctx.settings.SCAN_MAX_PAGES

    token: Optional[str] = None
    pages_seen = 0
    while True:
        if ctx.limit_reached():
            return

        params = dict(request)
        if spec.limit_key:
            size = page_size(spec, ctx.rows_remaining(), ctx.settings.SCAN_PAGE_SIZE)
            if size is not None:
                params[spec.limit_key] = str(size) if spec.limit_as_string else size
        if token and spec.input_token:
            params[spec.input_token] = token

        page = await ctx.call(call, **params)
        pages_seen += 1

        for item in extract_path(page, spec.items) or []:
            yield item
            if ctx.limit_reached():
                return

        next_token = extract_path(page, spec.output_token) if spec.output_token else None
        if not next_token:
            return
        if next_token == token:
            logger.warning(
                "pagination_token_repeated",
                table=ctx.table.name,
                region=ctx.region,
            )
            return
        if max_pages is not None and pages_seen >= max_pages:
            logger.warning(
                "pagination_page_cap_reached",
                table=ctx.table.name,
                region=ctx.region,
                max_pages=max_pages,
            )
            return
        token = next_token
