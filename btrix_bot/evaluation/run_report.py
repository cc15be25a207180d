"""
CLI entry point for the knowledge learning report.

Usage:
    python -m btrix_bot.evaluation.run_report --snapshot metrics.json --verbose
    python -m btrix_bot.evaluation.run_report --snapshot metrics.json --report report.txt
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from btrix_bot.evaluation.learning_loop import LearningLoop, format_report
from btrix_bot.evaluation.metrics import MetricsCollector

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Build a knowledge-base learning report from a metrics snapshot."
    )
    parser.add_argument(
        "--snapshot",
        type=str,
        required=True,
        help="Path to a metrics snapshot JSON file.",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        help="Path to write the report (default: stdout).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit the report as JSON instead of text.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging output.",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s: %(message)s",
        )

    snapshot_path = Path(args.snapshot)
    if not snapshot_path.exists():
        logger.error("Snapshot file not found: %s", snapshot_path)
        sys.exit(1)

    try:
        metrics = MetricsCollector.load(snapshot_path)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.error("Could not read snapshot %s: %s", snapshot_path, e)
        sys.exit(1)

    logger.info("Loaded %d request record(s) from %s", len(metrics.requests), snapshot_path)

    report = LearningLoop(metrics).generate_report()
    output = json.dumps(report, indent=2, ensure_ascii=False) if args.json else format_report(report)

    if args.report:
        report_path = Path(args.report)
        report_path.write_text(output, encoding="utf-8")
        logger.info("Report written to %s", report_path)
    else:
        sys.stdout.write(output + "\n")


if __name__ == "__main__":
    main()
