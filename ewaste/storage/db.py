from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS batches (
    batch_id TEXT PRIMARY KEY,
    location TEXT NOT NULL,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS image_assets (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    image_id TEXT NOT NULL UNIQUE,
    batch_id TEXT NOT NULL,
    filename TEXT NOT NULL,
    storage_key TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    size_bytes INTEGER NOT NULL CHECK (size_bytes >= 0),
    created_at TEXT NOT NULL,
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS detection_results (
    image_id TEXT PRIMARY KEY,
    raw_boxes_json TEXT NOT NULL DEFAULT '[]',
    summary_labels_json TEXT NOT NULL DEFAULT '[]',
    model_version TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (image_id) REFERENCES image_assets (image_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS text_inventory_entries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id TEXT NOT NULL UNIQUE,
    batch_id TEXT NOT NULL,
    raw_text TEXT NOT NULL,
    submitted_at TEXT NOT NULL,
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS inventory_items (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL UNIQUE,
    batch_id TEXT NOT NULL,
    raw_label TEXT NOT NULL,
    normalized_type TEXT NOT NULL CHECK (
        normalized_type IN ('laptop', 'smartphone', 'pcb', 'battery', 'cable', 'other')
    ),
    manufacturer TEXT,
    model TEXT,
    quantity REAL NOT NULL CHECK (quantity > 0),
    unit TEXT NOT NULL CHECK (unit IN ('count', 'kg', 'tons')),
    confidence TEXT NOT NULL CHECK (confidence IN ('high', 'medium', 'low')),
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS pipeline_runs (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL UNIQUE,
    batch_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    current_step TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending', 'in_progress', 'completed', 'failed')),
    step_results_json TEXT NOT NULL DEFAULT '{}',
    model_versions_json TEXT NOT NULL DEFAULT '{}',
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS metal_estimates (
    batch_id TEXT PRIMARY KEY,
    composition_json TEXT NOT NULL,
    aggregate_totals_kg_json TEXT NOT NULL,
    uncertainty_json TEXT NOT NULL,
    citations_json TEXT NOT NULL DEFAULT '[]',
    prompt_hash TEXT NOT NULL,
    model_used TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS price_snapshots (
    batch_id TEXT PRIMARY KEY,
    timestamp_utc TEXT NOT NULL,
    currency TEXT NOT NULL,
    prices_per_kg_json TEXT NOT NULL,
    sources_json TEXT NOT NULL DEFAULT '[]',
    total_gross_value_usd REAL NOT NULL,
    prompt_hash TEXT NOT NULL,
    model_used TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS extraction_plans (
    batch_id TEXT PRIMARY KEY,
    plan_json TEXT NOT NULL,
    total_cost_usd REAL NOT NULL,
    net_profit_usd REAL NOT NULL,
    prompt_hash TEXT NOT NULL,
    model_used TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS investor_reports (
    batch_id TEXT PRIMARY KEY,
    report_json TEXT NOT NULL,
    verdict TEXT NOT NULL CHECK (verdict IN ('Viable', 'Uncertain', 'NotViable')),
    updated_at TEXT NOT NULL,
    FOREIGN KEY (batch_id) REFERENCES batches (batch_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_image_assets_batch_id ON image_assets (batch_id);
CREATE INDEX IF NOT EXISTS idx_text_entries_batch_id ON text_inventory_entries (batch_id);
CREATE INDEX IF NOT EXISTS idx_inventory_items_batch_id ON inventory_items (batch_id);
CREATE INDEX IF NOT EXISTS idx_pipeline_runs_batch_id ON pipeline_runs (batch_id);
"""


def init_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with connection(db_path) as conn:
        conn.executescript(SCHEMA_SQL)


@contextmanager
def connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
