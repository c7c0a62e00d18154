from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import config

# Dedicated registry so embedding apps decide whether to expose it
registry = CollectorRegistry()

cache_hits = Counter("loadingcache_hits_total", "Reads served from a live entry", ["cache"], registry=registry)
cache_misses = Counter("loadingcache_misses_total", "Reads that invoked the loader", ["cache"], registry=registry)
load_failures = Counter("loadingcache_load_failures_total", "Loader invocations that raised", ["cache"], registry=registry)
cache_puts = Counter("loadingcache_puts_total", "Explicit writes", ["cache"], registry=registry)
load_duration_seconds = Histogram(
    "loadingcache_load_duration_seconds",
    "Loader latency seconds",
    ["cache"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 5),
    registry=registry,
)
key_locks = Gauge("loadingcache_key_locks", "Per-key locks held in the lock registry", ["cache"], registry=registry)


def record_hit(cache: str) -> None:
    if config.METRICS_ENABLED:
        cache_hits.labels(cache).inc()


def record_miss(cache: str) -> None:
    if config.METRICS_ENABLED:
        cache_misses.labels(cache).inc()


def record_load(cache: str, elapsed: float, failed: bool = False) -> None:
    if not config.METRICS_ENABLED:
        return
    load_duration_seconds.labels(cache).observe(elapsed)
    if failed:
        load_failures.labels(cache).inc()


def record_put(cache: str) -> None:
    if config.METRICS_ENABLED:
        cache_puts.labels(cache).inc()


def set_key_locks(cache: str, count: int) -> None:
    if config.METRICS_ENABLED:
        key_locks.labels(cache).set(count)


def export_metrics() -> bytes:
    """Return the latest metrics payload (Prometheus text format)."""
    return generate_latest(registry)
