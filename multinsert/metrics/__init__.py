from .registry import GROUP_LATENCY_SECONDS, ROWS_TOTAL, TX_TOTAL

__all__ = ["GROUP_LATENCY_SECONDS", "ROWS_TOTAL", "TX_TOTAL"]
