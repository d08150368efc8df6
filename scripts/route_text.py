#!/usr/bin/env python3
"""
Classify or route a request from the command line.

Usage:
    route_text.py "copy report.pdf to Desktop"          # route, JSON result
    route_text.py --classify "what's my battery level"  # classification only
    echo "calculate 2 + 2" | route_text.py --offline    # never call remote
    route_text.py --health

Reads the request from stdin when no text argument is given.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from taskroute.classifier import LocalClassifier  # noqa: E402
from taskroute.config import RouterConfig  # noqa: E402
from taskroute.cost_tracker import CostTracker  # noqa: E402
from taskroute.history_log import JsonlHistorySink  # noqa: E402
from taskroute.remote import LLMRemoteService  # noqa: E402
from taskroute.router import HybridRouter  # noqa: E402

logger = logging.getLogger("taskroute.cli")


def build_router(config: RouterConfig, offline: bool) -> HybridRouter:
    """Router with the remote service enabled when an API key is available."""
    cost_tracker = CostTracker()
    remote = None
    if not offline:
        try:
            remote = LLMRemoteService.from_config(
                config.remote,
                hybrid_threshold=config.thresholds.hybrid,
                cost_tracker=cost_tracker,
            )
        except ValueError as e:
            logger.warning(f"Remote service disabled: {e}")

    sink = JsonlHistorySink(config.history) if config.history.enabled else None
    return HybridRouter(config=config, remote=remote, cost_tracker=cost_tracker, sink=sink)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("text", nargs="?", help="request text (default: stdin)")
    parser.add_argument("--config", type=Path, help="config file (default: ~/.taskroute/config.json)")
    parser.add_argument("--classify", action="store_true", help="print the classification only")
    parser.add_argument("--offline", action="store_true", help="do not use the remote service")
    parser.add_argument("--health", action="store_true", help="print a health report")
    parser.add_argument("--timeout", type=float, help="remote timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging to stderr")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = RouterConfig.load(args.config)

    if args.health:
        router = build_router(config, args.offline)
        print(router.check_health().model_dump_json(indent=2))
        return 0

    text = args.text if args.text is not None else sys.stdin.read()
    if not text.strip():
        parser.error("no request text given")

    if args.classify:
        classifier = LocalClassifier(hybrid_threshold=config.thresholds.hybrid)
        print(json.dumps(classifier.classify(text).to_dict(), indent=2))
        return 0

    router = build_router(config, args.offline)
    result = asyncio.run(router.route(text, timeout=args.timeout))
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
