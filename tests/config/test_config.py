"""Tests for configuration models and the YAML parser."""

import pytest
from pydantic import ValidationError

from reconciler.config.models import ProviderSettings, ReconcilerConfig, RetrySettings
from reconciler.config.parser import Config, ConfigValidationError
from reconciler.utils.errors import ConfigurationError

VALID_YAML = """
provider:
  project: demo-project
  region: europe-west4
executor:
  max_workers: 8
retry:
  max_attempts: 3
  base_delay: 0.5
  max_delay: 10
state:
  path: /tmp/reconciler-state
logging:
  level: debug
  log_dir: null
"""


class TestModels:
    def test_defaults(self):
        config = ReconcilerConfig(provider={"project": "demo-project"})

        assert config.provider.region == "us-central1"
        assert config.executor.max_workers == 4
        assert config.retry.max_attempts == 5
        assert config.state.path == ".reconciler/state"
        assert config.logging.level == "info"

    @pytest.mark.parametrize("project", ["Demo", "ab", "demo_project", "1demo-project", "demo-project-"])
    def test_invalid_project(self, project):
        with pytest.raises(ValidationError):
            ProviderSettings(project=project)

    @pytest.mark.parametrize("region", ["us", "us-central", "us-central1-a", "12-central1"])
    def test_invalid_region(self, region):
        with pytest.raises(ValidationError):
            ProviderSettings(project="demo-project", region=region)

    def test_max_delay_below_base_delay(self):
        with pytest.raises(ValidationError, match="max_delay"):
            RetrySettings(base_delay=10, max_delay=1)

    def test_retry_strategy(self):
        strategy = RetrySettings(max_attempts=2, base_delay=0.25, max_delay=4, jitter=False).to_strategy()

        assert strategy.max_attempts == 2
        assert strategy.get_delay(1) == 0.25
        assert strategy.get_delay(10) == 4


class TestConfigParser:
    def test_load(self, tmp_path):
        path = tmp_path / "reconciler.yaml"
        path.write_text(VALID_YAML)

        config = Config(str(path)).load()

        assert config.provider.region == "europe-west4"
        assert config.executor.max_workers == 8
        assert config.retry.max_attempts == 3
        assert config.state.path == "/tmp/reconciler-state"
        assert config.logging.log_dir is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_path / "absent.yaml")).load()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "reconciler.yaml"
        path.write_text("provider: [unclosed")

        with pytest.raises(ConfigValidationError, match="Failed to parse YAML"):
            Config(str(path)).load()

    def test_validation_errors_are_listed(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            Config.from_dict({"provider": {"project": "X"}, "executor": {"max_workers": 0}})

        error = exc_info.value
        assert isinstance(error, ConfigurationError)
        locations = [tuple(e["loc"]) for e in error.errors]
        assert ("provider", "project") in locations
        assert ("executor", "max_workers") in locations
        assert "provider -> project" in str(error)

    def test_missing_provider(self):
        with pytest.raises(ConfigValidationError):
            Config.from_dict({})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigValidationError, match="mapping"):
            Config.from_dict(["provider"])
