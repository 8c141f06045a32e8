from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .aggregate import aggregate_budgets, format_japanese_currency, total_budget
from .cache import BudgetCache
from .config import WARDS, is_ward, load_settings
from .errors import BudgetFlowError, fetch_error_message
from .gemini import make_gemini_fetcher
from .types import BudgetResult


def _print_result(ward: str, result: BudgetResult) -> None:
    print(f"{ward}  最終更新: {result.fetched_at or '-'}")
    print(f"予算総額（抽出分）: {format_japanese_currency(total_budget(result.graph))}")
    names = result.graph.name_map()
    for link in result.graph.links:
        src = names.get(link.source, link.source)
        tgt = names.get(link.target, link.target)
        print(f"  {src} -> {tgt}: {format_japanese_currency(link.value)}")
    if result.explanation:
        print()
        print(result.explanation)
    for cit in result.citations:
        print(f"  [{cit.title}] {cit.uri}")


def _cmd_fetch(cache: BudgetCache, args: argparse.Namespace) -> int:
    fetcher = make_gemini_fetcher(load_settings(args.settings))
    try:
        result = asyncio.run(cache.get_or_fetch(args.ward, fetcher, force=args.force))
    except BudgetFlowError as exc:
        logging.getLogger(__name__).debug("fetch failed", exc_info=True)
        print(fetch_error_message(exc, args.ward), file=sys.stderr)
        return 1
    _print_result(args.ward, result)
    if cache.persist_error is not None:
        print(f"warning: {cache.persist_error}", file=sys.stderr)
    return 0


def _cmd_show(cache: BudgetCache, args: argparse.Namespace) -> int:
    result = cache.get(args.ward)
    if result is None:
        print(f"{args.ward}: 未取得", file=sys.stderr)
        return 1
    _print_result(args.ward, result)
    return 0


def _cmd_compare(cache: BudgetCache, args: argparse.Namespace) -> int:
    endpoint = str(load_settings(args.settings).get("aggregate_endpoint", "target"))
    report = aggregate_budgets(cache.snapshot(), WARDS, endpoint=endpoint)
    print(f"読込済み: {len(report.loaded())} / {len(WARDS)}")
    for rollup in report.rollups:
        print(f"{rollup.entity}\t{format_japanese_currency(rollup.total)}")
        for bucket in rollup.buckets:
            print(f"    {bucket.name}\t{format_japanese_currency(bucket.value)}")
    return 0


def _cmd_wards(cache: BudgetCache, args: argparse.Namespace) -> int:
    for ward in WARDS:
        mark = "*" if ward in cache else " "
        print(f"{mark} {ward}")
    return 0


def _ward(value: str) -> str:
    if not is_ward(value):
        raise argparse.ArgumentTypeError(f"unknown ward: {value}")
    return value


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="budgetflow",
        description="Tokyo 23 wards tourism budget flows: fetch, cache and compare",
    )
    parser.add_argument("--cache", default=None, help="Path to budget_cache.json")
    parser.add_argument("--settings", default=None, help="Path to settings.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_fetch = sub.add_parser("fetch", help="Fetch a ward (cached unless --force)")
    p_fetch.add_argument("ward", type=_ward)
    p_fetch.add_argument("--force", action="store_true", help="Refetch even if cached")
    p_fetch.set_defaults(func=_cmd_fetch)

    p_show = sub.add_parser("show", help="Print a cached ward")
    p_show.add_argument("ward", type=_ward)
    p_show.set_defaults(func=_cmd_show)

    sub.add_parser("compare", help="Compare funding totals across wards").set_defaults(func=_cmd_compare)
    sub.add_parser("wards", help="List wards, * marks cached ones").set_defaults(func=_cmd_wards)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cache_path = args.cache or str(load_settings(args.settings).get("cache_path"))
    cache = BudgetCache(cache_path)
    return args.func(cache, args)


if __name__ == "__main__":
    sys.exit(main())
