"""CLI entry point for the sweep runner."""

from __future__ import annotations

import argparse
import logging
import time

from common.config import get_settings
from queue_metrics.service import QueueMetricsService

from .config import SweepConfig
from .runner import SweepRunner

logger = logging.getLogger(__name__)


def main(argv=None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="Queue metrics sweeps (aggregation + baselines + stale workers)")
    p.add_argument("--sleep-seconds", type=float, default=60.0)
    p.add_argument("--stale-threshold", type=int, default=None, help="seconds without heartbeat before crashed")
    p.add_argument("--cleanup-older-than", type=int, default=None, help="also delete records idle for N seconds")
    p.add_argument("--skip-baselines", action="store_true")
    p.add_argument("--once", action="store_true", help="run a single iteration and exit")
    args = p.parse_args(argv)

    cfg = SweepConfig(
        sleep_seconds=args.sleep_seconds,
        once=bool(args.once),
        stale_threshold_seconds=args.stale_threshold,
        cleanup_older_than_seconds=args.cleanup_older_than,
        skip_baselines=bool(args.skip_baselines),
    )

    settings = get_settings()
    if not settings.enabled:
        logger.info("Queue metrics disabled (QUEUE_METRICS_ENABLED=false), nothing to do")
        return

    service = QueueMetricsService.build(settings)
    runner = SweepRunner(service, cfg)
    logger.info("Sweep runner started")
    logger.info(
        "Config: storage=%s prefix=%s sleep=%.1fs stale=%ss",
        settings.storage_driver,
        settings.key_prefix,
        cfg.sleep_seconds,
        cfg.stale_threshold_seconds or settings.stale_threshold_seconds,
    )

    while True:
        try:
            runner.run_once()
            if cfg.once:
                return
            logger.info("Iteración completada, esperando %.1fs...", cfg.sleep_seconds)
            time.sleep(cfg.sleep_seconds)
        except Exception as e:
            logger.error("Error en iteración: %s", e)
            if cfg.once:
                raise
            logger.info("Continuando con siguiente iteración...")
            time.sleep(cfg.sleep_seconds)


if __name__ == "__main__":
    main()
