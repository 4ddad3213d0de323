from __future__ import annotations

import logging

from ..metrics.registry import GROUP_LATENCY_SECONDS, ROWS_TOTAL, TX_TOTAL

logger = logging.getLogger(__name__)

# Metric failures must never mask real errors, so every helper swallows them.


def observe_row(table: str, outcome: str) -> None:
    try:
        ROWS_TOTAL.labels(table=table, outcome=outcome).inc()
    except Exception:
        logger.debug("Failed to record row metric for %s", table, exc_info=True)


def observe_group(table: str, latency_s: float) -> None:
    try:
        GROUP_LATENCY_SECONDS.labels(table=table).observe(latency_s)
    except Exception:
        logger.debug("Failed to record group latency for %s", table, exc_info=True)


def observe_tx(mode: str, status: str) -> None:
    try:
        TX_TOTAL.labels(mode=mode, status=status).inc()
    except Exception:
        logger.debug("Failed to record transaction metric", exc_info=True)
