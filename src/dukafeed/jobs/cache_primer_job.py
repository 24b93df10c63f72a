"""Cache Primer Job

Pulls a range of Dukascopy hour files for a list of symbols into the cache
chain (local disk, and S3 when a bucket is configured) so later searches are
served without touching the provider.

The job:
1. Reads configuration from config/cache_primer_job_config.json
2. Applies DUKAFEED_* environment overrides to the feed settings
3. Queues every hour file for every symbol on the primer's worker pool
4. Waits for completion and logs the cache statistics

Failed files are logged and skipped; rerunning the job fetches only what is
still missing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from dukafeed.utils.config import FeedConfig, build_primer, load_config
from dukafeed.utils.logger import setup_logger

_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_DEFAULT_CONFIG = _PROJECT_ROOT / "config" / "cache_primer_job_config.json"


def run_cache_primer_job(config_path: Optional[str] = None) -> dict[str, int]:
    """Prime the cache for every configured symbol.

    Args:
        config_path: Path to the JSON config (defaults to config/cache_primer_job_config.json)

    Returns:
        Loaded/failed file counts across all symbols
    """
    config = load_config(str(config_path or _DEFAULT_CONFIG))
    log_path = config.get("log_path")
    if log_path is not None and not Path(log_path).is_absolute():
        log_path = _PROJECT_ROOT / log_path
    logger = setup_logger("dukafeed.cache_primer", log_path, level=logging.INFO)

    symbols = config.get("symbols", [])
    start = config["start"]
    end = config["end"]
    feed_config = FeedConfig.from_dict(config).with_env()
    logger.info(f"Priming {len(symbols)} symbol(s) {start} -> {end} into {feed_config.cache_dir}")

    primer = build_primer(feed_config, logger=logger)
    try:
        primer.new_load()
        for symbol in symbols:
            primer.load(symbol, start, end)
        results = primer.wait_for_completion()
    finally:
        primer.shutdown()
    logger.info(f"Cache stats: {primer.cache.cache_stats()}")
    return results


if __name__ == "__main__":
    run_cache_primer_job()
