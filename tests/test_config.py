"""
Tests for AppConfig and environment helpers.
"""

import json
import os
import stat

import pytest
from unittest.mock import patch

from clearmind.app.config import AppConfig, get_db_url, get_config_dir, DEFAULT_DB_URL
from clearmind.core.llm import DEFAULT_MODEL


class TestAppConfigFile:
    def test_creates_file_with_defaults(self, tmp_path):
        config = AppConfig(tmp_path / "cfg")
        assert config.config_file.exists()
        with open(config.config_file) as f:
            assert json.load(f) == AppConfig.DEFAULTS
        assert config.llm_model == DEFAULT_MODEL

    def test_file_permissions(self, tmp_path):
        config = AppConfig(tmp_path)
        mode = stat.S_IMODE(os.stat(config.config_file).st_mode)
        assert mode == 0o600

    def test_fills_missing_keys(self, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"search_limit": 3}))
        config = AppConfig(tmp_path)
        assert config.search_limit == 3
        assert config.coach_limit == 3
        with open(config.config_file) as f:
            assert "recap_days" in json.load(f)

    @pytest.mark.parametrize("content", ["{broken", "[1, 2]"])
    def test_corrupt_file_reset(self, tmp_path, content):
        (tmp_path / "config.json").write_text(content)
        config = AppConfig(tmp_path)
        assert config.data == AppConfig.DEFAULTS

    def test_values_persist(self, tmp_path):
        AppConfig(tmp_path).reflect_limit = 7
        assert AppConfig(tmp_path).reflect_limit == 7


class TestValidation:
    @pytest.mark.parametrize("key", ["search_limit", "reflect_limit", "coach_limit", "related_limit",
                                     "coach_history_limit", "max_context_tokens", "recap_days"])
    @pytest.mark.parametrize("value", [0, -1, 2.5, True, "3"])
    def test_positive_int_settings(self, config, key, value):
        with pytest.raises(ValueError):
            setattr(config, key, value)

    @pytest.mark.parametrize("value", [1.5, -2, "0.2"])
    def test_similarity_range(self, config, value):
        with pytest.raises(ValueError):
            config.search_min_similarity = value

    def test_similarity_accepts_int(self, config):
        config.rag_min_similarity = 0
        assert config.rag_min_similarity == 0.0

    def test_empty_model(self, config):
        with pytest.raises(ValueError):
            config.llm_model = "  "


class TestGetSet:
    def test_set_coerces_strings(self, config):
        config.set("search_limit", "4")
        config.set("rag_min_similarity", "0.2")
        config.set("llm_model", "llama-3.3-70b-versatile")
        assert config.get("search_limit") == 4
        assert config.get("rag_min_similarity") == pytest.approx(0.2)
        assert config.get("llm_model") == "llama-3.3-70b-versatile"

    def test_set_non_numeric(self, config):
        with pytest.raises(ValueError):
            config.set("search_limit", "many")

    def test_unknown_key(self, config):
        with pytest.raises(KeyError):
            config.get("nope")
        with pytest.raises(KeyError):
            config.set("nope", "1")


class TestPolicies:
    def test_default_policies_match_constants(self, config):
        assert config.search_policy().min_similarity == 0.1
        assert config.search_policy().limit == 10
        assert config.search_policy().ellipsis is True
        assert config.reflect_policy().limit == 5
        assert config.coach_policy().limit == 3
        assert config.coach_policy().excerpt_chars == 200
        assert config.related_policy().excerpt_chars == 300

    def test_policies_follow_settings(self, config):
        config.rag_min_similarity = 0.3
        config.coach_limit = 2
        assert config.reflect_policy().min_similarity == 0.3
        assert config.coach_policy().min_similarity == 0.3
        assert config.coach_policy().limit == 2


class TestEnvironment:
    def test_db_url_default(self):
        with patch.dict('os.environ', {}, clear=True):
            assert get_db_url() == DEFAULT_DB_URL

    def test_db_url_from_env(self):
        with patch.dict('os.environ', {'DATABASE_URL': 'sqlite:////tmp/x.db'}):
            assert get_db_url() == 'sqlite:////tmp/x.db'

    def test_config_dir_from_env(self, tmp_path):
        with patch.dict('os.environ', {'CLEARMIND_CONFIG_DIR': str(tmp_path)}):
            assert get_config_dir() == tmp_path
            assert AppConfig().config_dir == tmp_path
