import os
from dataclasses import dataclass


def _bool_env(name, default=False):
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "y")


@dataclass
class Config:
    # ttl applied when a cache is built without an explicit one
    DEFAULT_TTL_SEC: float
    LOG_LEVEL: str
    METRICS_ENABLED: bool


def load_config() -> Config:
    return Config(
        DEFAULT_TTL_SEC=float(os.getenv("LOADINGCACHE_DEFAULT_TTL_SEC", "60")),
        LOG_LEVEL=os.getenv("LOADINGCACHE_LOG_LEVEL", "INFO"),
        METRICS_ENABLED=_bool_env("LOADINGCACHE_METRICS_ENABLED", default=True),
    )


config = load_config()
