"""Tests for feed configuration and wiring

Tests cover:
- Configuration loading
- Environment overrides
- Cache chain construction with and without S3
"""

import json
from unittest.mock import Mock

import pytest

from dukafeed.data.primer import DukascopyCachePrimer
from dukafeed.data.search import DukascopySearch
from dukafeed.data.tick_cache import LocalTickCache, S3TickCache
from dukafeed.exchanges.dukascopy_direct import DEFAULT_BASE_URL, DirectTickFetcher
from dukafeed.helpers.time_helper import to_epoch_ms
from dukafeed.utils.config import FeedConfig, build_primer, build_search, build_tick_cache, load_config


class TestLoadConfig:
    """Test configuration loading."""

    def test_load_valid_config(self, tmp_path):
        """Test loading a valid configuration file."""
        config_data = {"symbols": ["EURUSD"], "start": "2019-01-01T00:00:00Z", "cache_dir": "cache"}
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps(config_data))

        assert load_config(str(config_file)) == config_data

    def test_load_config_file_not_found(self):
        """Test loading config with non-existent file."""
        with pytest.raises(FileNotFoundError):
            load_config("nonexistent_config.json")

    def test_load_invalid_json(self, tmp_path):
        """Test loading invalid JSON file."""
        config_file = tmp_path / "invalid_config.json"
        config_file.write_text("{ invalid json }")

        with pytest.raises(json.JSONDecodeError):
            load_config(str(config_file))


class TestFeedConfig:
    """Test settings and overrides."""

    def test_defaults(self):
        config = FeedConfig()
        assert config.cache_dir == "~/.dukascopy-cache"
        assert config.s3_bucket is None
        assert config.base_url == DEFAULT_BASE_URL
        assert config.permits_per_second == 2.0
        assert config.retry_count == 3

    def test_from_dict_ignores_job_keys(self):
        """Test keys that are not feed settings are dropped."""
        config = FeedConfig.from_dict({"symbols": ["EURUSD"], "retry_count": 5, "s3_bucket": "ticks"})
        assert config.retry_count == 5
        assert config.s3_bucket == "ticks"

    def test_env_overrides(self):
        """Test environment values win and are converted."""
        environ = {
            "DUKAFEED_RETRY_COUNT": "7",
            "DUKAFEED_PERMITS_PER_SECOND": "4.5",
            "DUKAFEED_S3_BUCKET": "shared",
            "UNRELATED": "x",
        }
        config = FeedConfig(cache_dir="/data").with_env(environ)
        assert config.retry_count == 7
        assert config.permits_per_second == 4.5
        assert config.s3_bucket == "shared"
        assert config.cache_dir == "/data"

    def test_from_env_without_overrides(self):
        assert FeedConfig.from_env({}) == FeedConfig()


class TestWiring:
    """Test the cache chain built from a config."""

    def test_local_then_direct(self, tmp_path):
        """Test no bucket means no S3 tier."""
        limiter = Mock()
        cache = build_tick_cache(FeedConfig(cache_dir=str(tmp_path), retry_count=5), rate_limiter=limiter)

        assert isinstance(cache, LocalTickCache)
        assert cache.cache_dir == tmp_path
        direct = cache.fallback
        assert isinstance(direct, DirectTickFetcher)
        assert direct.rate_limiter is limiter
        assert direct.max_retries == 5

    def test_local_then_s3_then_direct(self, tmp_path):
        """Test a bucket inserts the S3 tier with the given client."""
        s3 = Mock()
        config = FeedConfig(cache_dir=str(tmp_path), s3_bucket="ticks", s3_prefix="archive")
        cache = build_tick_cache(config, s3_client=s3)

        s3_tier = cache.fallback
        assert isinstance(s3_tier, S3TickCache)
        assert s3_tier.s3 is s3
        assert s3_tier.bucket == "ticks"
        assert s3_tier.prefix == "archive"
        assert isinstance(s3_tier.fallback, DirectTickFetcher)

    def test_build_search(self, tmp_path):
        config = FeedConfig(cache_dir=str(tmp_path), beginning_of_time="2010-01-01T00:00:00Z")
        search = build_search(config, rate_limiter=Mock())

        assert isinstance(search, DukascopySearch)
        assert search.beginning_of_time_ms == to_epoch_ms("2010-01-01T00:00:00Z")
        assert search.bar_cache_stats() == "LocalBarCache 0 0h 0m 0.00% -> (DirectBarNoCache: 0 retrieve(s))"

    def test_build_primer(self, tmp_path):
        primer = build_primer(FeedConfig(cache_dir=str(tmp_path)), rate_limiter=Mock())
        try:
            assert isinstance(primer, DukascopyCachePrimer)
            assert isinstance(primer.cache, LocalTickCache)
        finally:
            primer.shutdown()
