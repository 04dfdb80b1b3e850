"""Ingestion helpers."""

from __future__ import annotations

import pathlib
from typing import Any

import yaml

CATALOG_PATH = pathlib.Path(__file__).with_name("catalog.yml")


def load_catalog(path: pathlib.Path = CATALOG_PATH) -> dict[str, list[dict[str, Any]]]:
    """Load the default categories and sample deals."""
    data = yaml.safe_load(path.read_text()) or {}
    return {
        "categories": list(data.get("categories") or []),
        "deals": list(data.get("deals") or []),
    }
