from prometheus_client import Counter, Info

from gateway.vars import SERVICE_NAME

FORWARD_TOTAL = Counter(
    "gateway_forward_total",
    "Requests forwarded to a backend, by outcome",
    ["outcome"],
)

RELOAD_TOTAL = Counter(
    "gateway_reload_total",
    "Routing table reload attempts, by result",
    ["result"],
)

app_info = Info("gateway_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})
