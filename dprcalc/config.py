import os
import typing

import yaml

from dprcalc.errors import ConfigurationError

DEFAULT_SETTINGS_FILE = os.path.join(os.path.dirname(__file__), "settings.default.yaml")
SETTINGS_ENV_VAR = "DPRCALC_SETTINGS"


class Settings:
    def __init__(
        self,
        epsilon: float = 1e-12,
        mass_tolerance: float = 1e-12,
        repair_tolerance: float = 1e-6,
        cache_enabled: bool = True,
        cache_size: int = 1000,
    ) -> None:
        self.epsilon = _non_negative_float("epsilon", epsilon)
        self.mass_tolerance = _non_negative_float("mass_tolerance", mass_tolerance)
        self.repair_tolerance = _non_negative_float("repair_tolerance", repair_tolerance)
        if not isinstance(cache_enabled, bool):
            raise ConfigurationError("cache.enabled must be a boolean, not '%s'" % (cache_enabled,))
        self.cache_enabled = cache_enabled
        if isinstance(cache_size, bool) or not isinstance(cache_size, int) or cache_size < 1:
            raise ConfigurationError("cache.size must be a positive integer, not '%s'" % (cache_size,))
        self.cache_size = cache_size

    def replace(self, **overrides: typing.Any) -> "Settings":
        values = self.as_dict()
        for key, value in overrides.items():
            if key not in values:
                raise ConfigurationError("unknown setting '%s'" % key)
            values[key] = value
        return Settings(**values)

    def as_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            "epsilon": self.epsilon,
            "mass_tolerance": self.mass_tolerance,
            "repair_tolerance": self.repair_tolerance,
            "cache_enabled": self.cache_enabled,
            "cache_size": self.cache_size,
        }

    def __repr__(self) -> str:
        return "Settings(%s)" % ", ".join("%s=%r" % item for item in self.as_dict().items())


def _non_negative_float(name: str, value: typing.Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError("%s must be a number, not '%s'" % (name, value))
    if result != result or result < 0:
        raise ConfigurationError("%s must be a non-negative number, not '%s'" % (name, value))
    return result


def _flatten(raw: typing.Dict[str, typing.Any], source: str) -> typing.Dict[str, typing.Any]:
    result: typing.Dict[str, typing.Any] = {}
    for key, value in raw.items():
        if key == "cache":
            if not isinstance(value, dict):
                raise ConfigurationError("'cache' in %s must be a mapping" % source)
            for cache_key, cache_value in value.items():
                if cache_key not in ("enabled", "size"):
                    raise ConfigurationError("unknown setting 'cache.%s' in %s" % (cache_key, source))
                result["cache_" + cache_key] = cache_value
        elif key in ("epsilon", "mass_tolerance", "repair_tolerance"):
            result[key] = value
        else:
            raise ConfigurationError("unknown setting '%s' in %s" % (key, source))
    return result


def _read(path: str) -> typing.Dict[str, typing.Any]:
    with open(path) as file:
        raw = yaml.safe_load(file)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError("settings file %s must contain a mapping" % path)
    return _flatten(raw, path)


def load_settings(path: typing.Optional[str] = None) -> Settings:
    values = _read(DEFAULT_SETTINGS_FILE)
    if path is None:
        path = os.environ.get(SETTINGS_ENV_VAR)
    if path:
        if not os.path.exists(path):
            raise ConfigurationError("settings file %s does not exist" % path)
        values.update(_read(path))
    return Settings(**values)


settings: typing.Optional[Settings] = None


def get_settings() -> Settings:
    global settings
    if settings is None:
        settings = load_settings()
    return settings


def configure(path: typing.Optional[str] = None, **overrides: typing.Any) -> Settings:
    global settings
    base = load_settings(path) if path is not None else get_settings()
    settings = base.replace(**overrides)

    from dprcalc import lru

    lru.reset_default_caches()
    return settings
