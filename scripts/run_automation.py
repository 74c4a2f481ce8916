"""Run one full automation cycle and print the report as JSON.

Intended for an external timer (cron) when the in-process scheduler is off:
batch sweep, explicit schedules, alert rules, cache warm-up, and on Mondays
retention cleanup.

Usage:
    python -m scripts.run_automation
    # crontab:
    0 * * * * cd /srv/hr-metrics && python -m scripts.run_automation
"""

import asyncio
import json
import logging
import sys

from hr_metrics.bootstrap import build_services
from hr_metrics.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


async def main() -> None:
    """Run the cycle; exit non-zero only when the sweep itself failed."""
    services = build_services()
    try:
        report = await services.automation.run_cycle(retention_days=get_settings().retention_days)
    except Exception as e:
        print(f"Automation cycle failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        services.close()

    print(json.dumps(report, indent=2, default=str))
    if report["batch"]["status"] == "error":
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
