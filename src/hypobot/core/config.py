"""
Layered configuration: TOML file overridden by environment variables.

Lookup order for ``config.get("polymarket.relay_secret")``:
1. Runtime overrides set with ``ConfigManager.set`` (CLI flags)
2. Environment variable ``HYPOBOT_POLYMARKET_RELAY_SECRET``
3. ``[polymarket] relay_secret`` in the TOML file
4. The caller's default
"""
import os
import tomllib
from pathlib import Path
from typing import Any, Optional

DEFAULT_ENV_PREFIX = "HYPOBOT_"

_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off")


class ConfigManager:
    """Dot-notation access to TOML settings with env var overrides.

    Usage:
        config = ConfigManager(Path("config/default.toml"))
        db_path = config.get("database.path", "./data/hypobot.db")
        min_liq = config.get_float("cycle.min_liquidity", 15000.0)
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        env_prefix: str = DEFAULT_ENV_PREFIX,
    ) -> None:
        """Initialize ConfigManager.

        Args:
            config_path: Path to TOML config file (optional)
            env_prefix: Prefix for environment variable overrides
        """
        self._data: dict[str, Any] = {}
        self._overrides: dict[str, Any] = {}
        self._env_prefix = env_prefix
        self._config_path = config_path

        if config_path and config_path.exists():
            self._load_toml(config_path)

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    def _load_toml(self, path: Path) -> None:
        with open(path, "rb") as f:
            self._data = tomllib.load(f)

    @staticmethod
    def _lookup(data: dict[str, Any], key: str) -> tuple[bool, Any]:
        """Walk nested tables along a dotted key.

        Returns (found, value) tuple.
        """
        current: Any = data
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return False, None
            current = current[part]
        return True, current

    def env_key(self, key: str) -> str:
        """Environment variable name for a dotted key."""
        return self._env_prefix + key.upper().replace(".", "_")

    def _from_env(self, key: str) -> tuple[bool, Any]:
        raw = os.environ.get(self.env_key(key))
        if raw is None:
            return False, None
        return True, self._coerce(raw)

    @staticmethod
    def _coerce(value: str) -> Any:
        """Turn an environment string into bool, number, list or str."""
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if "," in value:
            return [v.strip() for v in value.split(",") if v.strip()]

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key.

        Args:
            key: Dot-notation key like "hypobot.log_level"
            default: Returned when no layer defines the key

        Returns:
            Configuration value
        """
        if key in self._overrides:
            return self._overrides[key]

        found, value = self._from_env(key)
        if found:
            return value

        found, value = self._lookup(self._data, key)
        if found:
            return value

        return default

    def set(self, key: str, value: Any) -> None:
        """Override a value at runtime (takes precedence over env and TOML)."""
        self._overrides[key] = value

    def get_section(self, section: str) -> dict[str, Any]:
        """Get a whole TOML table as a dict (env overrides not applied)."""
        found, value = self._lookup(self._data, section)
        if found and isinstance(value, dict):
            return dict(value)
        return {}

    def get_str(self, key: str, default: str = "") -> str:
        """String value; an environment override is returned verbatim.

        Credentials such as ``0042`` or ``a,b`` must not go through the
        number/list coercion that ``get`` applies to environment strings.
        """
        if key not in self._overrides:
            raw = os.environ.get(self.env_key(key))
            if raw is not None:
                return raw
        value = self.get(key)
        if value is None:
            return default
        return str(value)

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key)
        if value is None or value == "":
            return default
        return float(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        return bool(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if value is None or value == "":
            return default
        return int(value)

    def get_list(self, key: str, default: Optional[list[Any]] = None) -> list[Any]:
        """Get a list value; comma-separated strings are split."""
        if default is None:
            default = []
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return [value]
