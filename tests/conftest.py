import pytest
import yaml
from abt.config.models import AppConfig, RunConfig
from abt.config.quality import parse_quality
from abt.infrastructure.event_bus import EventBus
from abt.infrastructure.shared_state import LockSettings, SharedStateStore

from tests.helpers import FakeEncoder

# ============================================================================
# Configuration Fixtures
# ============================================================================

FAST_LOCKS = dict(lock_timeout_s=1.0, lock_poll_s=0.01, lock_stale_s=1.0)


@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(general={"bitrate": "V2", "threads": 2, **FAST_LOCKS})


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "abt.yaml"

    content = {
        "general": {
            "bitrate": "256k",
            "threads": 3,
            "debug": False,
            "min_output_bytes": 2048,
        }
    }

    with open(conf_file, "w") as f:
        yaml.dump(content, f)

    return conf_file


@pytest.fixture
def source_dir(tmp_path):
    d = tmp_path / "music"
    d.mkdir()
    return d


@pytest.fixture
def dest_dir(tmp_path):
    d = tmp_path / "music_mp3"
    d.mkdir()
    return d


@pytest.fixture
def make_run_config(source_dir, dest_dir):
    """Factory for RunConfig rooted at the test source/dest directories."""

    def _make(**overrides):
        values = dict(
            source_root=source_dir,
            dest_root=dest_dir,
            quality=parse_quality("320k"),
            pool_size=2,
            progress_interval_s=0.05,
            **FAST_LOCKS,
        )
        values.update(overrides)
        return RunConfig(**values)

    return _make


@pytest.fixture
def store(tmp_path):
    settings = LockSettings(timeout_s=1.0, poll_interval_s=0.01, stale_after_s=1.0)
    state = SharedStateStore.create(settings, parent=tmp_path)
    yield state
    state.cleanup()


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
