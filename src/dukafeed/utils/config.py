"""
Feed configuration and wiring.

Settings come from a JSON file (``load_config``) and/or ``DUKAFEED_*``
environment variables, and are turned into a ready search or primer by
``build_search`` / ``build_primer``::

    config = FeedConfig.from_dict(load_config("config/cache_primer_job_config.json"))
    search = build_search(config)

The chain built is local disk -> S3 (only when ``s3_bucket`` is set) -> direct
fetch, with one rate limiter shared by the whole process.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

import boto3

from dukafeed.data.primer import DukascopyCachePrimer
from dukafeed.data.search import DEFAULT_BEGINNING_OF_TIME, DukascopySearch
from dukafeed.data.tick_cache import DEFAULT_CACHE_DIR, LocalTickCache, S3TickCache, TickCache
from dukafeed.exchanges.dukascopy_direct import DEFAULT_BASE_URL, DirectTickFetcher
from dukafeed.exchanges.rate_limiter import RateLimiter

_ENV_PREFIX = "DUKAFEED_"


def load_config(config_path: str) -> dict:
    """Load configuration from a JSON file."""
    with open(config_path, "r") as f:
        return json.load(f)


@dataclass
class FeedConfig:
    cache_dir: str = DEFAULT_CACHE_DIR
    s3_bucket: Optional[str] = None
    s3_prefix: str = ""
    base_url: str = DEFAULT_BASE_URL
    permits_per_second: float = 2.0
    retry_count: int = 3
    retry_seconds: float = 1.0
    request_timeout: float = 30
    beginning_of_time: str = DEFAULT_BEGINNING_OF_TIME

    @classmethod
    def from_dict(cls, data: dict) -> "FeedConfig":
        """Build from a config dict; keys that are not settings are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_env(self, environ: Optional[dict] = None) -> "FeedConfig":
        """Copy with ``DUKAFEED_<SETTING>`` environment overrides applied."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(self):
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                values[f.name] = getattr(self, f.name)
            elif f.name in ("permits_per_second", "retry_seconds", "request_timeout"):
                values[f.name] = float(raw)
            elif f.name == "retry_count":
                values[f.name] = int(raw)
            else:
                values[f.name] = raw
        return FeedConfig(**values)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "FeedConfig":
        return cls().with_env(environ)


def build_tick_cache(
    config: FeedConfig,
    rate_limiter: Optional[RateLimiter] = None,
    s3_client=None,
    logger: Optional[logging.Logger] = None,
) -> TickCache:
    rate_limiter = rate_limiter or RateLimiter(config.permits_per_second)
    cache: TickCache = DirectTickFetcher(
        rate_limiter,
        base_url=config.base_url,
        max_retries=config.retry_count,
        retry_seconds=config.retry_seconds,
        timeout=config.request_timeout,
        logger=logger,
    )
    if config.s3_bucket:
        cache = S3TickCache(
            s3_client or boto3.client("s3"),
            config.s3_bucket,
            cache,
            prefix=config.s3_prefix,
            logger=logger,
        )
    return LocalTickCache(cache, cache_dir=config.cache_dir, logger=logger)


def build_search(
    config: FeedConfig,
    rate_limiter: Optional[RateLimiter] = None,
    s3_client=None,
    logger: Optional[logging.Logger] = None,
) -> DukascopySearch:
    cache = build_tick_cache(config, rate_limiter, s3_client, logger)
    return DukascopySearch(cache, beginning_of_time=config.beginning_of_time, logger=logger)


def build_primer(
    config: FeedConfig,
    rate_limiter: Optional[RateLimiter] = None,
    s3_client=None,
    logger: Optional[logging.Logger] = None,
) -> DukascopyCachePrimer:
    cache = build_tick_cache(config, rate_limiter, s3_client, logger)
    return DukascopyCachePrimer(cache, logger=logger)
