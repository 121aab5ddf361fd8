import pytest

from dprcalc import config, lru


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    monkeypatch.delenv(config.SETTINGS_ENV_VAR, raising=False)
    config.settings = None
    lru._default = None
    yield
    config.settings = None
    lru._default = None
