from __future__ import annotations

"""
ADINSIGHT COMMAND LINE RUNNER
Runs the analytics core over an exported file of insight rows

Subcommands:
- aggregate: per-entity records with daily/platform breakdowns
- delivery: delivery-pattern classification per entity
- gaps: delivery-gap detection per entity
- fatigue: date-range-aware fatigue scoring
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from dotenv import load_dotenv

from adinsight.analytics.aggregator import Aggregator, AggregatorConfig, check_consistency, group_rows
from adinsight.analytics.delivery import DeliveryPatternAnalyzer
from adinsight.analytics.fatigue import DateRangeAwareFatigueEngine, FatigueConfig
from adinsight.analytics.gap_detection import GapDetectionConfig, GapDetectionEngine
from adinsight.config import SCHEMA_PATH_DEFAULT, load_settings
from adinsight.infrastructure.data_validation import group_key, normalize_rows
from adinsight.infrastructure.date_validation import resolve_window
from adinsight.infrastructure.error_handling import ConfigurationError
from adinsight.utils import DateWindow

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """Log to stderr so stdout stays pure JSON."""
    level_name = (level or os.getenv("ADINSIGHT_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT, stream=sys.stderr)
    noise_levels = {
        "numexpr": logging.WARNING,
        "numexpr.utils": logging.WARNING,
        "urllib3": logging.WARNING,
    }
    for name, lvl in noise_levels.items():
        logging.getLogger(name).setLevel(lvl)


def load_rows(path: str) -> List[Dict[str, Any]]:
    """
    Load an export of insight rows (CSV or JSON records).
    Every value is read as a string; numeric parsing happens once at ingestion.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input file not found: {path}")

    if path.lower().endswith(".json"):
        df = pd.read_json(path, orient="records", dtype=False)
        df = df.astype(object).where(df.notna(), None)
    else:
        try:
            df = pd.read_csv(path, dtype=str, keep_default_na=False)
        except pd.errors.EmptyDataError:
            return []
    rows = df.to_dict(orient="records")
    logger.info(f"Loaded {len(rows)} rows from {path}")
    return rows


def _window(args: argparse.Namespace) -> DateWindow:
    if args.since and args.until:
        return DateWindow(args.since, args.until)
    if args.date_range:
        return resolve_window(args.date_range)
    raise ConfigurationError("Either --since/--until or --date-range is required", field="window")


def _workers(args: argparse.Namespace) -> Optional[int]:
    if args.workers:
        return args.workers
    env = os.getenv("ADINSIGHT_MAX_WORKERS")
    if not env:
        return None
    try:
        return int(env)
    except ValueError:
        raise ConfigurationError("ADINSIGHT_MAX_WORKERS must be an integer", field="max_workers", value=env) from None


def _entity_groups(rows: Sequence[Dict[str, Any]], args: argparse.Namespace):
    groups, _ = group_rows(normalize_rows(rows), args.group_by)
    if args.entity:
        groups = {k: v for k, v in groups.items() if k == args.entity}
    return groups


def run_aggregate(args: argparse.Namespace, settings: Dict[str, Any], rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    cfg = AggregatorConfig.from_settings(
        settings,
        group_by=args.group_by,
        max_workers=_workers(args),
        sort_output=True if args.sort else None,
        deduplicate=True if args.dedupe else None,
        include_daily=False if args.no_daily else None,
        include_platform=False if args.no_platform else None,
    )
    if args.entity:
        key = group_key(args.group_by)
        rows = [r for r in rows if str(r.get(key) or "") == args.entity]
    result = Aggregator(cfg).aggregate(rows)
    out = result.as_dict()
    if args.check_consistency:
        out["consistency"] = [
            {
                "entity_id": c.entity_id,
                "is_consistent": c.is_consistent,
                "total_checks": c.total_checks,
                "passed_checks": c.passed_checks,
                "discrepancies": [asdict(d) for d in c.discrepancies],
            }
            for c in (check_consistency(r) for r in result.records)
        ]
    return out


def run_delivery(args: argparse.Namespace, settings: Dict[str, Any], rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    window = _window(args)
    analyzer = DeliveryPatternAnalyzer()
    return {
        "window": window.as_dict(),
        "entities": {
            entity_id: analyzer.analyze(entity_rows, window).as_dict()
            for entity_id, entity_rows in _entity_groups(rows, args).items()
        },
    }


def run_gaps(args: argparse.Namespace, settings: Dict[str, Any], rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    window = _window(args)
    engine = GapDetectionEngine(GapDetectionConfig.from_settings(settings))
    entities: Dict[str, Any] = {}
    for entity_id, entity_rows in _entity_groups(rows, args).items():
        timeline, result = engine.analyze_entity(entity_rows, window, entity_id)
        entities[entity_id] = {"timeline": timeline.summary(), **result.as_dict()}
    return {"window": window.as_dict(), "entities": entities}


def run_fatigue(args: argparse.Namespace, settings: Dict[str, Any], rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    engine = DateRangeAwareFatigueEngine(FatigueConfig.from_settings(settings), group_by=args.group_by)
    if args.entity:
        rows = list(_entity_groups(rows, args).get(args.entity, []))
    return engine.analyze_gaps(rows, args.date_range or "custom").as_dict()


COMMANDS = {
    "aggregate": run_aggregate,
    "delivery": run_delivery,
    "gaps": run_gaps,
    "fatigue": run_fatigue,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="adinsight", description="Ad insight analytics over exported rows")
    parser.add_argument("--settings", default=None, help="settings YAML (default: $ADINSIGHT_SETTINGS)")
    parser.add_argument("--schema", default=SCHEMA_PATH_DEFAULT)
    parser.add_argument("--log-level", default=None)

    sub = parser.add_subparsers(dest="command", required=True)
    for name in COMMANDS:
        p = sub.add_parser(name)
        p.add_argument("input", help="CSV or JSON export of insight rows")
        p.add_argument("--group-by", choices=["ad", "adset", "campaign"], default="ad")
        p.add_argument("--entity", default=None, help="restrict to one entity id")
        if name == "aggregate":
            p.add_argument("--workers", type=int, default=None)
            p.add_argument("--sort", action="store_true", help="sort records by entity id")
            p.add_argument("--dedupe", action="store_true", help="drop duplicate (entity, day, platform) rows")
            p.add_argument("--no-daily", action="store_true")
            p.add_argument("--no-platform", action="store_true")
            p.add_argument("--check-consistency", action="store_true")
        else:
            p.add_argument("--since", default=None, help="window start (YYYY-MM-DD)")
            p.add_argument("--until", default=None, help="window end (YYYY-MM-DD)")
            p.add_argument("--date-range", default=None, help="preset label, e.g. last_7d or last_30d")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load environment first (for dynamic .env overrides)
    load_dotenv()
    configure_logging(args.log_level)

    try:
        settings = load_settings(args.settings, args.schema)
        rows = load_rows(args.input)
        output = COMMANDS[args.command](args, settings, rows)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print("Fatal configuration error. Exiting.", file=sys.stderr)
        return 1
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid input: {e}")
        return 2

    json.dump(output, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
