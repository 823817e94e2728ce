"""Fetch every row of a table in fixed-size pages."""

import logging

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.errors import FetchError
from db_snapshot.outcome import Err, Ok

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


async def fetch_all_rows(
    adapter: DatabaseClient,
    table: str,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Ok[list[dict]] | Err:
    """Read *table* page by page until a short page signals the end.

    Pages are requested with ``limit``/``offset`` and no ordering.  A failure
    on any page stops this table only; rows already read are discarded so
    the table is reported empty.

    Returns:
        ``Ok(rows)`` or ``Err("Error fetching <table>: <message>")``.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    rows: list[dict] = []
    offset = 0
    while True:
        try:
            page = await adapter.select(table, "*", limit=page_size, offset=offset)
        except Exception as e:
            error = FetchError(f"Error fetching {table}: {e}")
            logger.error(str(error))
            return Err(str(error))

        rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size

    logger.debug(f"Fetched {len(rows)} rows from {table}")
    return Ok(rows)
