"""Tests for onlinenow.settings."""

import pytest

from onlinenow.settings import (
    LatencySettings,
    ReachabilitySettings,
    ScheduleSettings,
    Settings,
    ThroughputSettings,
)


class TestDefaults:
    """Defaults match the documented probe parameters."""

    def test_reachability_defaults(self):
        s = ReachabilitySettings()
        assert s.primary_url == "https://www.google.com/generate_204"
        assert s.primary_expected_status == 204
        assert s.captive_url.startswith("http://")
        assert s.timeout_s == 5.0
        assert s.attempts_per_endpoint == 1

    def test_throughput_urls(self):
        s = ThroughputSettings()
        assert s.url_for(quick=True) == "https://speed.cloudflare.com/__down?bytes=5000000"
        assert s.url_for(quick=False) == "https://speed.cloudflare.com/__down?bytes=10000000"
        assert s.warmup_bytes == 100_000

    def test_schedule_defaults(self):
        s = ScheduleSettings()
        assert s.reachability_interval_ms == 10_000
        assert s.throughput_interval_ms == 120_000


class TestValidation:
    """Invalid values are rejected at construction."""

    def test_non_positive_timeout(self):
        with pytest.raises(ValueError):
            ReachabilitySettings(timeout_s=0)

    def test_zero_samples(self):
        with pytest.raises(ValueError):
            LatencySettings(samples=0)

    def test_negative_warmup(self):
        with pytest.raises(ValueError):
            ThroughputSettings(warmup_bytes=-1)

    def test_zero_interval(self):
        with pytest.raises(ValueError):
            ScheduleSettings(reachability_interval_ms=0)


class TestFromEnv:
    """Test ONLINENOW_* environment overrides."""

    def test_empty_environment_gives_defaults(self):
        assert Settings.from_env({}) == Settings()

    def test_overrides(self):
        env = {
            "ONLINENOW_REACHABILITY_INTERVAL_MS": "30000",
            "ONLINENOW_DETECT_CAPTIVE_PORTALS": "false",
            "ONLINENOW_LATENCY_SAMPLES": "5",
            "ONLINENOW_WARMUP_BYTES": "0",
            "ONLINENOW_HISTORY_MAX_RECORDS": "10",
            "ONLINENOW_CONSTRAINED": "yes",
        }
        settings = Settings.from_env(env)

        assert settings.schedule.reachability_interval_ms == 30000
        assert settings.reachability.detect_captive_portals is False
        assert settings.latency.samples == 5
        assert settings.throughput.warmup_bytes == 0
        assert settings.history.max_records == 10
        assert settings.constrained_override is True

    def test_blank_value_uses_default(self):
        settings = Settings.from_env({"ONLINENOW_LATENCY_TIMEOUT_S": "  "})
        assert settings.latency.timeout_s == 3.0

    def test_unparsable_value_raises(self):
        with pytest.raises(ValueError, match="ONLINENOW_LATENCY_SAMPLES"):
            Settings.from_env({"ONLINENOW_LATENCY_SAMPLES": "three"})

    def test_invalid_value_raises(self):
        with pytest.raises(ValueError):
            Settings.from_env({"ONLINENOW_REACHABILITY_TIMEOUT_S": "-1"})
