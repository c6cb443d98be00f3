from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)

# ================================
# TABLES
# ================================
FLYERS_TABLE = "flyers"
CATALOG_TABLE = "catalog_products"
PROMOTIONS_TABLE = "promotions"


# ================================
# CLIENT FACTORY
# ================================
def build_client(url: str, key: str) -> Client:
    """
    Build the Supabase client used for both Postgres tables and Storage.

    The service-role key is required: uploads to the flyer bucket and
    inserts into the catalog bypass row level security.
    """
    logger.debug("Creating Supabase client for %s", url)
    return create_client(url, key)


# ================================
# ROW HELPERS
# ================================
def insert_returning(client: Any, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert one row and return it as stored (with its generated id).

    Raises whatever the client raises; RuntimeError if no row came back.
    """
    response = client.table(table).insert(data).execute()
    rows: List[Dict[str, Any]] = response.data or []
    if not rows:
        raise RuntimeError(f"insert into {table} returned no rows")
    return rows[0]


def first_row(response: Any) -> Optional[Dict[str, Any]]:
    rows = getattr(response, "data", None) or []
    return rows[0] if rows else None
