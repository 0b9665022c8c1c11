#!/usr/bin/env python3
"""
PostureLens -- Compliance posture lookups against the evidence registry.

Usage:
  python main.py resolve payments-api --commit 3e2ab4d
  python main.py status payments-api
  python main.py status payments-api --branch release/2.4
  python main.py evidence payments-api --control github.repo.coverage
  python main.py trends --start 2026-01-01 --end 2026-03-31 --max-points 30
  python main.py trends --asset payments-api --start 2026-01-01 --end 2026-03-31
  python main.py summary
  python main.py assets pay
  python main.py authors --asset payments-api --start 2026-01-01
  python main.py controls --severity high
  python main.py violations --control github.repo.coverage --since 2026-01-01
  python main.py status payments-api --no-cache

Environment variables:
  REGISTRY_URL      Base URL of the registry API (default http://localhost:8080/api)
  REGISTRY_TOKEN    Bearer token of a pre-authenticated session
  REGISTRY_TENANT   Tenant id sent as X-Tenant-ID
  REGISTRY_USER     User id recorded in security audit records
  LOG_LEVEL         Logging level for stderr output (default INFO)
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Optional

from cache.store import ComplianceCache
from core.config import Settings, get_settings
from core.models import Session
from core.pipeline import ComplianceEngine
from core.registry import RegistryClient, RegistryError

logger = logging.getLogger("posturelens.cli")


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_jsonable(value), indent=2, default=str))


def _build_engine(settings: Settings, cache: Optional[ComplianceCache]) -> ComplianceEngine:
    session = Session(
        user_id=settings.registry_user,
        tenant_id=settings.registry_tenant,
        access_token=settings.registry_token,
    )
    return ComplianceEngine(RegistryClient(settings, session), cache=cache, settings=settings)


def _add_asset_args(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("asset", help="Asset name, application code, or UUID (substring match)")
    sub.add_argument("--branch", metavar="NAME", help="Branch to resolve to its newest commit")
    sub.add_argument("--commit", metavar="SHA", help="Full or short commit SHA (wins over --branch)")


def _run(args: argparse.Namespace, engine: ComplianceEngine) -> Any:
    if args.command == "resolve":
        return engine.resolve(args.asset, branch=args.branch, commit=args.commit)
    if args.command == "status":
        return engine.asset_compliance(args.asset, branch=args.branch, commit=args.commit)
    if args.command == "evidence":
        return engine.find_attestations(args.asset, control_path=args.control, commit=args.commit, branch=args.branch)
    if args.command == "trends":
        return engine.compliance_trends(
            args.start, args.end, asset_identifier=args.asset, max_data_points=args.max_points
        )
    if args.command == "summary":
        return engine.compliance_summary()
    if args.command == "assets":
        return engine.list_assets(args.search)
    if args.command == "authors":
        return engine.commit_authors(args.asset, start=args.start, end=args.end)
    if args.command == "controls":
        return engine.list_controls(framework=args.framework, severity=args.severity)
    if args.command == "violations":
        return engine.failing_attestations(
            args.asset, control_path=args.control, severity=args.severity, since=args.since, limit=args.limit
        )
    raise ValueError(f"Unknown command: {args.command}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="posturelens",
        description="Resolve assets and report compliance posture from the evidence registry.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py status payments-api --commit 3e2ab4d
  python main.py evidence payments-api --control coverage
  python main.py trends --start 2026-01-01 --end 2026-03-31
        """,
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Skip the local cache and force fresh registry lookups",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    _add_asset_args(subparsers.add_parser("resolve", help="Resolve an identifier to canonical asset identity"))
    _add_asset_args(subparsers.add_parser("status", help="Compliance snapshot for an asset"))

    evidence = subparsers.add_parser("evidence", help="Attestation evidence for an asset")
    _add_asset_args(evidence)
    evidence.add_argument("--control", metavar="PATH", help="Control path filter (partial paths match)")

    trends = subparsers.add_parser("trends", help="Daily compliance score over a date range")
    trends.add_argument("--asset", metavar="ASSET", help="Limit to an asset name or UUID")
    trends.add_argument("--start", required=True, metavar="DATE", help="Start date (YYYY-MM-DD)")
    trends.add_argument("--end", required=True, metavar="DATE", help="End date (YYYY-MM-DD)")
    trends.add_argument("--max-points", type=int, default=30, metavar="N", help="Maximum data points (default: 30)")

    subparsers.add_parser("summary", help="Organization-wide compliance summary")

    assets = subparsers.add_parser("assets", help="List applications and assets in the catalog")
    assets.add_argument("search", nargs="?", help="Optional substring filter")

    authors = subparsers.add_parser("authors", help="Commit author statistics")
    authors.add_argument("--asset", metavar="ASSET", help="Limit to an asset name or UUID")
    authors.add_argument("--start", metavar="DATE", help="Start date (YYYY-MM-DD)")
    authors.add_argument("--end", metavar="DATE", help="End date (YYYY-MM-DD)")

    controls = subparsers.add_parser("controls", help="List controls in the tenant catalog")
    controls.add_argument("--framework", metavar="NAME", help="Framework filter")
    controls.add_argument("--severity", metavar="LEVEL", help="Severity filter (critical, high, medium, low)")

    violations = subparsers.add_parser("violations", help="Failing attestations across the organization")
    violations.add_argument("--asset", metavar="ASSET", help="Limit to an asset name or UUID")
    violations.add_argument("--control", metavar="PATH", help="Control path filter")
    violations.add_argument("--severity", metavar="LEVEL", help="Control severity filter")
    violations.add_argument("--since", metavar="DATE", help="Only violations recorded on or after DATE")
    violations.add_argument(
        "--limit", type=int, default=100, metavar="N", help="Maximum violations (default: 100, max 500)"
    )

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    if not settings.registry_token or not settings.registry_tenant:
        parser.error("REGISTRY_TOKEN and REGISTRY_TENANT must be set.")

    cache = None
    if not args.no_cache:
        db_path = Path(settings.cache_db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        cache = ComplianceCache(db_path, ttl=settings.cache_ttl)

    engine = _build_engine(settings, cache)
    try:
        result = _run(args, engine)
    except ValueError as e:
        parser.error(str(e))
    except RegistryError as e:
        logger.error("Registry request failed: %s", e)
        print(f"  [!] Registry request failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if cache is not None:
            cache.close()

    _print_json(result)


if __name__ == "__main__":
    main()
