from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flyer_bot.errors import (
    CatalogInsertError,
    CatalogLookupError,
    FlyerInsertError,
    PromotionInsertError,
)
from flyer_bot.parser_engine.contract import ExtractedPayload, LineItem
from flyer_bot.services.supabase import (
    CATALOG_TABLE,
    FLYERS_TABLE,
    PROMOTIONS_TABLE,
    first_row,
    insert_returning,
)
from flyer_bot.utils.time import elapsed_ms

logger = logging.getLogger(__name__)

# Matches the UNIQUE NULLS NOT DISTINCT constraint in schema.sql
CATALOG_CONFLICT_COLUMNS = "product_name,brand"

_LOCK_STRIPES = 64


@dataclass
class PersistReport:
    """
    What one persist() call committed.

    flyer_id is None when the flyer row itself could not be written; in
    that case nothing else was attempted.
    """
    flyer_id: Optional[int] = None
    products_created: int = 0
    promotions_saved: int = 0
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    duration_ms: int = 0
    error: Optional[FlyerInsertError] = None


def flyer_row(payload: ExtractedPayload, source_contact_id: str, artifact_path: str) -> Dict[str, Any]:
    return {
        "merchant_name": payload.merchant_name,
        "promotion_expiry": payload.promotion_expiry,
        "source_contact_id": source_contact_id,
        "artifact_path": artifact_path,
    }


def promotion_row(flyer_id: int, product_id: int, item: LineItem) -> Dict[str, Any]:
    return {
        "flyer_id": flyer_id,
        "product_id": product_id,
        "price_amount": item.price_amount,
        "standardized_unit": item.standardized_unit,
        "standardized_value": item.standardized_value,
    }


class CatalogPersister:
    """
    Writes a validated flyer payload to Postgres.

    One `flyers` row per call, then per line item: resolve (or create) the
    catalog product and insert a `promotions` row. Line items are isolated
    from each other: one failing item is logged and skipped, the rest still
    commit. There is no transaction around the whole payload.
    """

    def __init__(self, client: Any) -> None:
        self._client = client
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    # ------------------------------------------------------------------ #
    # Flyer
    # ------------------------------------------------------------------ #
    def _insert_flyer(self, payload: ExtractedPayload, sender: str, artifact_path: str) -> int:
        try:
            row = insert_returning(self._client, FLYERS_TABLE, flyer_row(payload, sender, artifact_path))
        except Exception as e:  # noqa: BLE001
            raise FlyerInsertError(f"could not save flyer: {e}", sender) from e
        return row["id"]

    # ------------------------------------------------------------------ #
    # Catalog
    # ------------------------------------------------------------------ #
    def _key_lock(self, key: tuple) -> threading.Lock:
        return self._locks[hash(key) % _LOCK_STRIPES]

    def find_product(self, item: LineItem, sender: Optional[str] = None) -> Optional[int]:
        """
        Exact, case-sensitive (product_name, brand) lookup.
        """
        query = self._client.table(CATALOG_TABLE).select("id").eq("product_name", item.product_name)
        # `brand = NULL` never matches in SQL
        if item.brand is None:
            query = query.is_("brand", "null")
        else:
            query = query.eq("brand", item.brand)

        try:
            row = first_row(query.execute())
        except Exception as e:  # noqa: BLE001
            raise CatalogLookupError(f"could not look up {item.product_name!r}: {e}", sender) from e
        return row["id"] if row else None

    def _create_product(self, item: LineItem, sender: Optional[str]) -> Tuple[int, bool]:
        data = {"product_name": item.product_name, "brand": item.brand}
        try:
            response = (
                self._client.table(CATALOG_TABLE)
                .upsert(data, on_conflict=CATALOG_CONFLICT_COLUMNS, ignore_duplicates=True)
                .execute()
            )
        except Exception as e:  # noqa: BLE001
            raise CatalogInsertError(f"could not add {item.product_name!r} to catalog: {e}", sender) from e

        row = first_row(response)
        if row:
            return row["id"], True

        # Another writer created it between our lookup and the upsert.
        existing = self.find_product(item, sender)
        if existing is None:
            raise CatalogInsertError(f"catalog upsert for {item.product_name!r} returned no row", sender)
        return existing, False

    def resolve_product(self, item: LineItem, sender: Optional[str] = None) -> Tuple[int, bool]:
        """
        Get-or-create the catalog entry for a line item.

        Returns:
            (product_id, created)
        """
        existing = self.find_product(item, sender)
        if existing is not None:
            return existing, False

        with self._key_lock(item.catalog_key):
            existing = self.find_product(item, sender)
            if existing is not None:
                return existing, False
            product_id, created = self._create_product(item, sender)

        if created:
            logger.info("🆕 Product added to catalog with ID %s", product_id)
        return product_id, created

    # ------------------------------------------------------------------ #
    # Promotions
    # ------------------------------------------------------------------ #
    def _insert_promotion(self, flyer_id: int, product_id: int, item: LineItem, sender: str) -> None:
        try:
            self._client.table(PROMOTIONS_TABLE).insert(promotion_row(flyer_id, product_id, item)).execute()
        except Exception as e:  # noqa: BLE001
            raise PromotionInsertError(
                f"could not save promotion for {item.product_name!r}: {e}", sender
            ) from e

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #
    def persist(
        self,
        payload: ExtractedPayload,
        source_contact_id: str,
        artifact_path: str,
    ) -> PersistReport:
        logger.info("Starting to save data to the database...")
        report = PersistReport()
        started = time.perf_counter()

        try:
            report.flyer_id = self._insert_flyer(payload, source_contact_id, artifact_path)
        except FlyerInsertError as e:
            logger.error("Error saving flyer: %s", e)
            report.error = e
            report.duration_ms = elapsed_ms(started)
            return report

        logger.debug("⏱️ Flyer insert time: %dms", elapsed_ms(started))
        logger.info("🗂️ Flyer created with ID: %s", report.flyer_id)

        # Products the validator could not read never reach the database.
        report.skipped.extend(payload.rejected_items)

        items_started = time.perf_counter()
        for item in payload.line_items:
            try:
                product_id, created = self.resolve_product(item, source_contact_id)
            except (CatalogLookupError, CatalogInsertError) as e:
                logger.error("Skipping product: %s", e)
                report.skipped.append((item.product_name, str(e)))
                continue

            if created:
                report.products_created += 1

            try:
                self._insert_promotion(report.flyer_id, product_id, item, source_contact_id)
            except PromotionInsertError as e:
                logger.error("Skipping promotion: %s", e)
                report.skipped.append((item.product_name, str(e)))
                continue

            report.promotions_saved += 1
            logger.info("Promotion saved: %s - R$ %s", item.product_name, item.price_amount)

        logger.debug("⏱️ Product save time: %dms", elapsed_ms(items_started))

        report.duration_ms = elapsed_ms(started)
        logger.debug("⏱️ Total database save time: %dms", report.duration_ms)
        logger.info(
            "Flyer %s saved: %d promotion(s), %d new product(s), %d skipped.",
            report.flyer_id,
            report.promotions_saved,
            report.products_created,
            len(report.skipped),
        )
        return report
