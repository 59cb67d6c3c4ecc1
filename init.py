"""Application startup orchestration helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from db import utils as db_utils
from db.schema import create_schema
from lookups.service import seed_lookups as seed_lookup_rows
from media.storage import LocalStorage

logger = logging.getLogger(__name__)

LOOKUP_SEED_FILENAME = 'lookups.csv'


def load_lookup_seed(lookup_data_dir: Path) -> pd.DataFrame:
    """Read the lookup seed CSV, returning an empty frame when it is missing."""

    path = Path(lookup_data_dir) / LOOKUP_SEED_FILENAME
    if not path.exists():
        logger.warning("Lookup seed file not found: %s", path)
        return pd.DataFrame(columns=['type', 'canonical_name', 'slug', 'sort_order'])
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    return frame.fillna('')


def initialize_app(
    *,
    engine: db_utils.DatabaseEngine,
    storage: LocalStorage,
    lookup_data_dir: Path,
    seed_lookups: bool = True,
) -> db_utils.DatabaseEngine:
    """Perform the core startup tasks required for the application.

    Storage buckets are created, the schema is created where missing, the
    lookups table is seeded from ``lookups.csv`` and the engine is registered
    as the fallback used outside a request.
    """

    storage.ensure_buckets()
    create_schema(engine.engine)

    if seed_lookups:
        frame = load_lookup_seed(lookup_data_dir)
        with db_utils.db_lock, engine.begin() as conn:
            inserted = seed_lookup_rows(conn, frame)
        if inserted:
            logger.info("Seeded %d lookup value(s) from %s", inserted, lookup_data_dir)

    db_utils.set_fallback_connection(engine)
    return engine


__all__ = ["initialize_app", "load_lookup_seed"]
