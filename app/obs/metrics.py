# app/obs/metrics.py
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# 单件生命周期
units_added_total = Counter("stockunits_units_added_total", "Units added to stock")
units_removed_total = Counter("stockunits_units_removed_total", "Units removed from stock", ["policy"])
units_moved_total = Counter("stockunits_units_moved_total", "Units moved between locations")

# 条码池：复用 vs 新铸
pool_minted_total = Counter("stockunits_pool_minted_total", "Pool barcodes minted from the counter")
pool_reused_total = Counter("stockunits_pool_reused_total", "Available pool barcodes reallocated")

concurrency_conflicts_total = Counter(
    "stockunits_concurrency_conflicts_total", "Retried or surfaced concurrency conflicts", ["op"]
)
consistency_violations_total = Counter(
    "stockunits_consistency_violations_total", "Detected invariant violations", ["kind"]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        http_requests_total.labels(
            request.method, request.url.path, str(response.status_code)
        ).inc()
        http_request_duration.labels(request.method, request.url.path).observe(elapsed)
        return response
