"""Register the Thinkific webhook topics the sync engine handles."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from learnsync.classifier import EventClassifier
from learnsync.config import get_settings
from learnsync.thinkific import ThinkificClient

LOGGER = logging.getLogger("learnsync.register_webhooks")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create Thinkific webhooks pointing at this service.")
    parser.add_argument("--target-url", default=None, help="Webhook URL (default: WEBHOOK_URL).")
    parser.add_argument(
        "--topic",
        action="append",
        dest="topics",
        help="Topic to register, e.g. enrollment.created. Repeatable; defaults to every routed topic.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None, *, client: Optional[ThinkificClient] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = parse_args(argv)
    settings = get_settings()
    target_url = args.target_url or settings.webhook_url
    if not target_url:
        LOGGER.error("No target URL; pass --target-url or set WEBHOOK_URL.")
        return 1
    topics = args.topics or EventClassifier().topics()
    thinkific = client or ThinkificClient.from_settings(settings)
    registered = thinkific.register_webhooks(topics, target_url)
    LOGGER.info("Registered %d of %d webhook topics", len(registered), len(topics))
    return 0 if len(registered) == len(topics) else 1


if __name__ == "__main__":
    sys.exit(main())
