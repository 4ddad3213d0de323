from prometheus_client import Counter, Histogram

ROWS_TOTAL = Counter(
    "multinsert_rows_total",
    "Rows processed by the bulk writer, by table and outcome",
    ["table", "outcome"],
)

GROUP_LATENCY_SECONDS = Histogram(
    "multinsert_group_latency_seconds",
    "Time spent writing one group's rows",
    ["table"],
)

TX_TOTAL = Counter(
    "multinsert_tx_total",
    "Transaction scopes finished, by transaction mode and status",
    ["mode", "status"],
)
