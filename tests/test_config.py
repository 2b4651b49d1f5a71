"""
Unit tests for configuration loading.

Tests strict YAML validation and tier overrides.
"""

import os
import tempfile

import pytest
import yaml

from chart_radar.config.loader import (
    AppConfig,
    CaptureConfig,
    ProviderConfig,
    default_config,
    load_config
)
from chart_radar.core.tiers import AnalysisKind, Tier, TierLimits


class TestConfigLoader:
    """Test YAML configuration loading."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, content: str) -> str:
        path = os.path.join(self.temp_dir, "config.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def test_full_config(self):
        path = self.write_config("""
provider:
  model: deepseek-chat
  base_url: https://api.deepseek.com/v1
  api_key_env: DEEPSEEK_API_KEY
  timeout_seconds: 45
  max_tokens: 1500
  temperature: 0.2
capture:
  background: "#ffffff"
  channel_threshold: 30
  min_content_percentage: 5
  min_color_diversity: 10
  target_samples: 2000
tiers:
  basic:
    free:
      daily: 5
  deep:
    pro:
      daily: 20
      monthly: 600
storage:
  db_path: /tmp/radar.db
logging:
  level: debug
""")

        config = load_config(path)

        assert config.provider.model == "deepseek-chat"
        assert config.provider.base_url == "https://api.deepseek.com/v1"
        assert config.provider.timeout_seconds == 45
        assert config.capture.background == (255, 255, 255)
        assert config.capture.target_samples == 2000
        assert config.limits.get_limits(Tier.FREE, AnalysisKind.BASIC) == TierLimits(5, 90)
        assert config.limits.get_limits(Tier.PRO, AnalysisKind.DEEP) == TierLimits(20, 600)
        assert config.limits.get_limits(Tier.STARTER, AnalysisKind.DEEP) == TierLimits(5, 150)
        assert config.storage.db_path == "/tmp/radar.db"
        assert config.logging.level == "debug"

    def test_empty_file_gives_defaults(self):
        config = load_config(self.write_config(""))

        assert config == default_config()

    def test_partial_config_keeps_defaults(self):
        config = load_config(self.write_config("provider:\n  model: gpt-4o-mini\n"))

        assert config.provider.model == "gpt-4o-mini"
        assert config.provider.api_key_env == "OPENAI_API_KEY"
        assert config.capture == CaptureConfig()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        with pytest.raises(yaml.YAMLError):
            load_config(self.write_config("provider: [unclosed"))

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(self.write_config("billing:\n  enabled: true\n"))

    def test_unknown_section_key(self):
        with pytest.raises(ValueError, match="Unknown provider keys"):
            load_config(self.write_config("provider:\n  modle: gpt-4o\n"))

    def test_wrong_type(self):
        with pytest.raises(ValueError, match="invalid type"):
            load_config(self.write_config("provider:\n  timeout_seconds: soon\n"))

        with pytest.raises(ValueError, match="invalid type"):
            load_config(self.write_config("capture:\n  target_samples: true\n"))

    def test_invalid_values(self):
        with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
            load_config(self.write_config("provider:\n  timeout_seconds: 0\n"))

        with pytest.raises(ValueError, match="logging.level"):
            load_config(self.write_config("logging:\n  level: chatty\n"))

        with pytest.raises(ValueError, match="rrggbb"):
            load_config(self.write_config("capture:\n  background: '#12'\n"))

    def test_invalid_tier_overrides(self):
        with pytest.raises(ValueError, match="Unknown analysis kind"):
            load_config(self.write_config("tiers:\n  premium:\n    free:\n      daily: 1\n"))

        with pytest.raises(ValueError, match="Unknown tier"):
            load_config(self.write_config("tiers:\n  basic:\n    gold:\n      daily: 1\n"))

        with pytest.raises(ValueError, match="must be a positive integer"):
            load_config(self.write_config("tiers:\n  basic:\n    free:\n      daily: 0\n"))

        with pytest.raises(ValueError, match="Unknown keys"):
            load_config(self.write_config("tiers:\n  basic:\n    free:\n      weekly: 3\n"))

    def test_root_must_be_mapping(self):
        with pytest.raises(ValueError, match="must be a dictionary"):
            load_config(self.write_config("- just\n- a list\n"))


class TestConfigObjects:
    """Test dataclass validation and helpers."""

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("CHART_RADAR_TEST_KEY", "sk-abc")

        assert ProviderConfig(api_key_env="CHART_RADAR_TEST_KEY").api_key == "sk-abc"

    def test_missing_api_key_is_none(self, monkeypatch):
        monkeypatch.delenv("CHART_RADAR_MISSING_KEY", raising=False)

        assert ProviderConfig(api_key_env="CHART_RADAR_MISSING_KEY").api_key is None

    def test_capture_validation(self):
        with pytest.raises(ValueError, match="background"):
            CaptureConfig(background=(300, 0, 0))

        with pytest.raises(ValueError, match="target_samples"):
            CaptureConfig(target_samples=0)

    def test_defaults(self):
        config = AppConfig()

        assert config.provider.model == "gpt-4o"
        assert config.storage.db_path == "chart_radar.db"
        assert config.limits.get_limits(Tier.FREE) == TierLimits(3, 90)
