"""Decode a shared build token against a talent catalog.

Accepts a bare token, a query string, or a full share URL and prints the
decoded build, any warnings, and per-tree point totals. --effects adds the
summed stat modifiers of the selected reward tiers.

Usage:
    python -m scripts.decode_build TOKEN [--catalog PATH] [--json] [--effects]
    python -m scripts.decode_build 'https://example/?build=eyJjdiI6MX0' --catalog talents.json
"""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from talent_planner.codec.build_codec import (
    DecodeResult,
    decode_build,
    decode_build_from_query,
)
from talent_planner.engine.effect_summary import EffectTotal, summarize_effects
from talent_planner.models.constants import MODEL_CREATURE
from talent_planner.models.talent import TalentCatalog
from talent_planner.parser.catalog_parser import load_catalog


DEFAULT_CATALOG = Path("data/talents.json")


def _decode_input(value: str, catalog: TalentCatalog) -> DecodeResult:
    """Route a URL or query string through the query decoder, else treat as a token."""
    if "://" in value:
        return decode_build_from_query(urlsplit(value).query, catalog)
    if value.startswith("?") or "build=" in value:
        return decode_build_from_query(value, catalog)
    return decode_build(value, catalog)


def _effect_totals(result: DecodeResult, catalog: TalentCatalog) -> list[EffectTotal]:
    build = result.build
    model = catalog.model(build.model_id) if build else None
    if build is None or model is None:
        return []
    tree_ids = None
    if build.model_id == MODEL_CREATURE:
        archetype = model.archetypes.get(build.archetype_id)
        tree_ids = [t.id for t in archetype.trees.values()] if archetype else []
    return summarize_effects(build.talents, model, tree_ids=tree_ids)


def _result_payload(
    result: DecodeResult, effects: list[EffectTotal] | None = None
) -> dict[str, Any]:
    payload = {
        "has_param": result.has_param,
        "error_code": result.error_code,
        "warnings": [asdict(w) for w in result.warnings],
        "metadata": asdict(result.metadata) if result.metadata else None,
        "build": asdict(result.build) if result.build else None,
        "overcap": result.overcap,
    }
    if effects is not None:
        payload["effects"] = [asdict(e) for e in effects]
    return payload


def _print_result(result: DecodeResult, effects: list[EffectTotal] | None = None) -> None:
    if not result.has_param:
        print("No build parameter found.")
        return
    if result.error_code:
        print(f"Error: {result.error_code}")
        return

    build = result.build
    assert build is not None
    print(f"Model:     {build.model_id}")
    print(f"Archetype: {build.archetype_id or '-'}")
    if result.metadata:
        print(f"Title:     {result.metadata.title}")
        if result.metadata.description:
            print(f"About:     {result.metadata.description}")
    if build.player_modifier_ids:
        print(f"Modifiers: {', '.join(build.player_modifier_ids)}")
    if result.overcap:
        print("Overcap:   point totals exceed the current caps")

    for tree_id, talents in build.talents.items():
        print(f"\n{tree_id} ({sum(talents.values())} points)")
        for talent_id, rank in talents.items():
            print(f"  {talent_id:<40} {rank}")

    if effects:
        print("\nEffects:")
        for effect in effects:
            print(f"  {effect.modifier_id:<40} {effect.total:g}")

    if result.warnings:
        print("\nWarnings:")
        for warning in result.warnings:
            print(f"  - {warning.message}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Decode a shared talent build")
    parser.add_argument("token", help="Share token, query string, or share URL")
    parser.add_argument("--catalog", type=Path, default=DEFAULT_CATALOG,
                        help="Talent catalog JSON (default: %(default)s)")
    parser.add_argument("--json", action="store_true", help="Print JSON output")
    parser.add_argument("--effects", action="store_true",
                        help="Include summed stat effects of the selected talents")
    args = parser.parse_args(argv)

    if not args.catalog.exists():
        print(f"Error: catalog not found: {args.catalog}")
        return 2

    catalog = load_catalog(args.catalog)
    result = _decode_input(args.token, catalog)
    effects = _effect_totals(result, catalog) if args.effects else None

    if args.json:
        print(json.dumps(_result_payload(result, effects), indent=2))
    else:
        _print_result(result, effects)
    return 1 if result.error_code else 0


if __name__ == "__main__":
    raise SystemExit(main())
