from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import List, Sequence

from pydantic import ValidationError

from shopchat.api.deps import build_container
from shopchat.core.config import AppSettings, get_settings
from shopchat.core.context import RequestContext
from shopchat.core.logging import configure_logging
from shopchat.models.catalog import CatalogEntry, IngestResult
from shopchat.repositories.catalog import SqlCatalogStore

logger = logging.getLogger("shopchat.scripts.ingest_catalog")

DEFAULT_SOURCE = Path(__file__).resolve().parents[1] / "data" / "seed_products.json"


def load_entries_from_file(path: Path) -> List[CatalogEntry]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("Seed file must contain a list of catalog entries.")
    entries: list[CatalogEntry] = []
    for position, raw in enumerate(data):
        try:
            entries.append(CatalogEntry.model_validate(raw))
        except ValidationError as exc:
            raise ValueError(f"Invalid catalog entry at position {position}: {exc}") from exc
    return entries


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load catalog entries into the store and the vector index.")
    parser.add_argument("--source", type=Path, default=DEFAULT_SOURCE, help="Path to a JSON list of catalog entries.")
    parser.add_argument("--reset", action="store_true", help="Drop the vector collection before ingesting.")
    parser.add_argument(
        "--reindex",
        action="store_true",
        help="Re-upsert every active store entry instead of reading --source.",
    )
    return parser.parse_args(argv)


async def run(
    args: argparse.Namespace,
    settings: AppSettings | None = None,
    store: SqlCatalogStore | None = None,
) -> IngestResult:
    settings = settings or get_settings()
    store = store or SqlCatalogStore()
    catalog = build_container(settings, store=store).catalog
    context = RequestContext.new("cli")

    restored = 0
    if args.reset:
        logger.info("Dropping collection %s", settings.qdrant_collection)
        await catalog.reset_index(context)
        # The store outlives the collection, so its entries go back in before new ones.
        restored = (await catalog.reindex(context)).indexed

    if args.reindex:
        return IngestResult(indexed=restored) if args.reset else await catalog.reindex(context)

    entries = load_entries_from_file(args.source)
    existing = {entry.externalId for entry in store.find_by_ids(entry.externalId for entry in entries)}
    fresh = [entry for entry in entries if entry.externalId not in existing]
    if existing:
        logger.info("Skipping %d entries already in the catalog", len(existing))
    if not fresh:
        return IngestResult(indexed=restored)
    created = await catalog.ingest(fresh, context)
    return IngestResult(indexed=restored + created.indexed)


def main(argv: Sequence[str] | None = None) -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    args = parse_args(argv)
    result = asyncio.run(run(args, settings=settings))
    logger.info("Indexed %d catalog entries", result.indexed)


if __name__ == "__main__":
    main()
