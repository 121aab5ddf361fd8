import pytest

from dprcalc import config, lru
from dprcalc.errors import ConfigurationError


def test_defaults():
    settings = config.get_settings()
    assert settings.epsilon == 1e-12
    assert settings.mass_tolerance == 1e-12
    assert settings.repair_tolerance == 1e-6
    assert settings.cache_enabled
    assert settings.cache_size == 1000
    assert config.get_settings() is settings


def test_user_file_overrides_defaults(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("epsilon: 1.0e-9\ncache:\n  size: 10\n")
    settings = config.load_settings(str(path))
    assert settings.epsilon == 1e-9
    assert settings.cache_size == 10
    assert settings.mass_tolerance == 1e-12


def test_environment_variable(tmp_path, monkeypatch):
    path = tmp_path / "settings.yaml"
    path.write_text("cache:\n  enabled: false\n")
    monkeypatch.setenv(config.SETTINGS_ENV_VAR, str(path))
    assert not config.load_settings().cache_enabled


def test_empty_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("")
    assert config.load_settings(str(path)).epsilon == 1e-12


@pytest.mark.parametrize(
    "text",
    [
        "precision: 3\n",
        "cache:\n  ttl: 3\n",
        "cache: 3\n",
        "- 1\n- 2\n",
        "epsilon: -1\n",
        "epsilon: lots\n",
        "cache:\n  size: 0\n",
        "cache:\n  enabled: sometimes\n",
    ],
)
def test_invalid_files(tmp_path, text):
    path = tmp_path / "settings.yaml"
    path.write_text(text)
    with pytest.raises(ConfigurationError):
        config.load_settings(str(path))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        config.load_settings(str(tmp_path / "nowhere.yaml"))


def test_replace():
    settings = config.Settings().replace(epsilon=1e-6)
    assert settings.epsilon == 1e-6
    assert settings.as_dict()["cache_size"] == 1000
    with pytest.raises(ConfigurationError):
        settings.replace(tolerance=3)
    assert "epsilon=1e-06" in repr(settings)


def test_configure_rebuilds_caches():
    config.configure(cache_size=5, epsilon=1e-10)
    assert config.get_settings().epsilon == 1e-10
    assert lru.default_caches().pmf.max_size == 5
    config.configure(cache_enabled=False)
    assert not lru.active_caches().resolve.enabled
    assert config.get_settings().epsilon == 1e-10
