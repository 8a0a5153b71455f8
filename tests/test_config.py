"""Tests for configuration helpers."""

from __future__ import annotations

import pytest

from src import config


class TestSetting:
    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("MAX_STEPS_TEST", raising=False)
        assert config._setting("MAX_STEPS_TEST", 10, int) == 10

    def test_parses_value(self, monkeypatch):
        monkeypatch.setenv("MAX_STEPS_TEST", "4")
        assert config._setting("MAX_STEPS_TEST", 10, int) == 4

    def test_garbage_fails_loudly(self, monkeypatch):
        monkeypatch.setenv("MAX_STEPS_TEST", "ten")
        with pytest.raises(ValueError, match="MAX_STEPS_TEST"):
            config._setting("MAX_STEPS_TEST", 10, int)


class TestSecret:
    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("SOME_TOKEN", "abc")
        assert config._secret("SOME_TOKEN") == "abc"

    def test_placeholder_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("SOME_TOKEN", "your_token_here")
        monkeypatch.setattr(config, "_ON_AWS", False)
        with pytest.raises(OSError, match="SOME_TOKEN"):
            config._secret("SOME_TOKEN")

    def test_falls_back_to_ssm_on_aws(self, monkeypatch):
        monkeypatch.delenv("SOME_TOKEN", raising=False)
        monkeypatch.setattr(config, "_ON_AWS", True)
        monkeypatch.setattr(config, "_from_ssm", lambda name: f"ssm-{name}")
        assert config._secret("SOME_TOKEN") == "ssm-SOME_TOKEN"
