"""
seed_catalog.py
───────────────
Loads categories, products, stores and offers from a JSON file into the
database (upsert by id), so the customer search has something to find.

Expected file shape:

    {
      "categories": [{"id", "name", "description"?}],
      "products":   [{"id", "name", "sku", "brandName"?, "packageInfo"?, "categoryId"?, ...}],
      "stores":     [{"id", "name", "address", "location"}],
      "offers":     [{"id", "productId", "storeId", "price", "currency", "isAvailable"?, "quantity"?}]
    }

A store whose "location" link changed since the last run loses its cached
coordinates and is geocoded again on the next search.

Usage:
    python seed_catalog.py catalog.json
    python seed_catalog.py catalog.json --dry-run     # validate + count, write nothing
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from marketplace.database.engine import Base, SessionLocal, engine
from marketplace.database import models  # noqa: F401
from marketplace.database.repositories.catalog_repository import CatalogRepository
from marketplace.database.repositories.store_repository import StoreRepository

# ── ANSI colours ─────────────────────────────────────────────────────────────
RED    = "\033[91m"
GREEN  = "\033[92m"
YELLOW = "\033[93m"
BOLD   = "\033[1m"
RESET  = "\033[0m"

SECTIONS = ("categories", "products", "stores", "offers")


def product_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name":             raw["name"],
        "sku":              raw["sku"],
        "description":      raw.get("description"),
        "category_id":      raw.get("categoryId"),
        "brand_id":         raw.get("brandId"),
        "brand_name":       raw.get("brandName"),
        "package_info":     raw.get("packageInfo"),
        "storage_life":     raw.get("storageLife"),
        "allergens":        raw.get("allergens"),
        "age_restrictions": raw.get("ageRestrictions"),
    }


def offer_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "product_id":   raw["productId"],
        "store_id":     raw["storeId"],
        "price":        float(raw["price"]),
        "currency":     raw["currency"],
        "is_available": bool(raw.get("isAvailable", True)),
        "quantity":     int(raw.get("quantity", 0)),
    }


def seed(data: Dict[str, Any], dry_run: bool = False) -> Dict[str, int]:
    counts = {section: len(data.get(section) or []) for section in SECTIONS}
    if dry_run:
        return counts

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        catalog = CatalogRepository(db)
        stores = StoreRepository(db)

        for raw in data.get("categories") or []:
            catalog.upsert_category(id=raw["id"], name=raw["name"], description=raw.get("description"))
        for raw in data.get("products") or []:
            catalog.upsert_product(id=raw["id"], images=raw.get("images"), **product_fields(raw))
        for raw in data.get("stores") or []:
            stores.upsert(
                id=raw["id"],
                name=raw["name"],
                address=raw.get("address", ""),
                location=raw.get("location", ""),
            )
        for raw in data.get("offers") or []:
            catalog.upsert_offer(id=raw["id"], **offer_fields(raw))
    return counts


def main():
    parser = argparse.ArgumentParser(description="Seed the marketplace catalog from JSON")
    parser.add_argument("file", type=Path, help="Path to the catalog JSON file")
    parser.add_argument("--dry-run", action="store_true", help="Validate and count only")
    args = parser.parse_args()

    if not args.file.exists():
        print(f"{RED}❌  File not found: {args.file}{RESET}")
        sys.exit(1)

    try:
        data = json.loads(args.file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"{RED}❌  Invalid JSON in {args.file}: {e}{RESET}")
        sys.exit(1)

    try:
        counts = seed(data, dry_run=args.dry_run)
    except KeyError as e:
        print(f"{RED}❌  Record is missing required field {e}{RESET}")
        sys.exit(1)

    label = f"{YELLOW}[dry-run]{RESET} " if args.dry_run else ""
    print(f"\n{BOLD}{label}Catalog seed summary{RESET}")
    for section in SECTIONS:
        print(f"   {section:<11}: {counts[section]}")
    if not args.dry_run:
        print(f"{GREEN}✓  Done{RESET}")


if __name__ == "__main__":
    main()
