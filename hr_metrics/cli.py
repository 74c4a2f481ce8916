"""Command-line access to the metrics engine.

Usage:
    python -m hr_metrics.cli list [--category CATEGORY]
    python -m hr_metrics.cli compute CATEGORY NAME [--department D] [--branch B] [--date-from X] [--date-to Y]
    python -m hr_metrics.cli export --format xlsx [--category CATEGORY | --metric ID ...]
    python -m hr_metrics.cli batch
    python -m hr_metrics.cli alerts
    python -m hr_metrics.cli schedule CATEGORY NAME CADENCE
    python -m hr_metrics.cli cleanup [--days N]
    python -m hr_metrics.cli status
    python -m hr_metrics.cli serve [--host HOST] [--port PORT]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import uvicorn

from hr_metrics.bootstrap import Services, build_services
from hr_metrics.config import get_settings
from hr_metrics.errors import MetricsError
from hr_metrics.export.exporters import EXPORT_FORMATS, write_artifact
from hr_metrics.metrics.models import MetricFilters

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _filters(args: argparse.Namespace) -> MetricFilters:
    return MetricFilters.from_mapping(
        {
            "department": args.department,
            "branch": args.branch,
            "date_from": args.date_from,
            "date_to": args.date_to,
        }
    )


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--department", help="Department id")
    parser.add_argument("--branch", help="Branch id")
    parser.add_argument("--date-from", dest="date_from", help="Inclusive start date (YYYY-MM-DD)")
    parser.add_argument("--date-to", dest="date_to", help="Inclusive end date (YYYY-MM-DD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hr-metrics", description="HR analytics metrics engine")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List metric definitions")
    list_cmd.add_argument("--category")

    compute = sub.add_parser("compute", help="Compute one metric (cached when fresh)")
    compute.add_argument("category")
    compute.add_argument("name")
    compute.add_argument("--refresh", action="store_true", help="Ignore cached values")
    _add_filter_args(compute)

    export = sub.add_parser("export", help="Export a metric set to a file")
    export.add_argument("--format", choices=sorted(EXPORT_FORMATS), default="csv")
    export.add_argument("--category")
    export.add_argument("--metric", action="append", dest="metrics", help="Metric id (repeatable)")
    export.add_argument("--output-dir", help="Defaults to EXPORT_DIR")
    _add_filter_args(export)

    sub.add_parser("batch", help="Run one batch sweep over the registry")
    sub.add_parser("alerts", help="Evaluate active alert rules")

    schedule = sub.add_parser("schedule", help="Schedule a metric for periodic recomputation")
    schedule.add_argument("category")
    schedule.add_argument("name")
    schedule.add_argument("cadence", choices=["hourly", "daily", "weekly", "monthly"])

    cleanup = sub.add_parser("cleanup", help="Delete summaries and logs older than the retention window")
    cleanup.add_argument("--days", type=int, help="Defaults to RETENTION_DAYS")

    sub.add_parser("status", help="Show automation and cache status")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Defaults to API_HOST")
    serve.add_argument("--port", type=int, help="Defaults to API_PORT")
    return parser


def run(args: argparse.Namespace, services: Services) -> int:
    settings = get_settings()
    match args.command:
        case "list":
            registry = services.metrics.registry
            definitions = registry.list_category(args.category) if args.category else registry.list_all()
            for d in definitions:
                print(f"{d.metric_id:60s} {d.display_shape:16s} {d.description}")
        case "compute":
            filters = _filters(args)
            if args.refresh:
                result = services.metrics.refresh(args.category, args.name, filters).result
            else:
                result = services.metrics.get(args.category, args.name, filters)
            _print_json(result.model_dump(mode="json"))
        case "export":
            metric_ids = args.metrics
            if metric_ids is None and args.category:
                metric_ids = [d.metric_id for d in services.metrics.registry.list_category(args.category)]
            filters = _filters(args)
            items = services.metrics.collect(metric_ids, filters)
            artifact = services.exporter.export(items, args.format, filters)
            print(write_artifact(artifact, args.output_dir or settings.export_dir))
        case "batch":
            outcome = asyncio.run(services.automation.process_batch())
            _print_json(outcome.as_dict())
            return 0 if outcome.status in ("success", "partial") else 1
        case "alerts":
            _print_json(services.alerts.process_alerts().as_dict())
        case "schedule":
            _print_json(services.automation.schedule_metric(args.category, args.name, args.cadence))
        case "cleanup":
            _print_json(services.automation.cleanup(args.days if args.days is not None else settings.retention_days))
        case "status":
            _print_json(services.automation.status())
    return 0


def serve(args: argparse.Namespace) -> None:
    settings = get_settings()
    uvicorn.run(
        "hr_metrics.api.main:app",
        host=args.host or settings.api_host,
        port=args.port if args.port is not None else settings.api_port,
        log_level="info",
    )


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        serve(args)
        return
    services = build_services()
    try:
        code = run(args, services)
    except MetricsError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        code = 1
    finally:
        services.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
