import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "service-gateway")
GATEWAY_CONFIG = os.getenv("GATEWAY_CONFIG", "config.json")

# Upstream calls are always bounded; a hung backend must not pin a task forever
PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "30"))
PROXY_CONNECT_TIMEOUT = float(os.getenv("PROXY_CONNECT_TIMEOUT", "10"))
DISCONNECT_POLL_INTERVAL = float(os.getenv("DISCONNECT_POLL_INTERVAL", "0.1"))

HEALTH_PATH = os.getenv("HEALTH_PATH", "/__health")
METRICS_PATH = os.getenv("METRICS_PATH", "/__metrics")

# Header injected by a trusted edge (e.g. Cloudflare) with the real client address
CLIENT_IP_HEADER = os.getenv("CLIENT_IP_HEADER", "cf-connecting-ip").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

HTTP_METHODS = (
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "CONNECT",
    "OPTIONS",
    "TRACE",
    "PATCH",
)
