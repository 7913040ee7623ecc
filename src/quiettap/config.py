import sys
from dataclasses import dataclass
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

CONFIG_DIR = Path.home() / ".config" / "quiettap"
CONFIG_FILE = CONFIG_DIR / "config.toml"


@dataclass
class Config:
    # Rendering
    time_zone: str = "UTC"
    suppress_failed_names: bool = False

    # Logging ("" = don't keep a line log)
    line_log: str = ""
    log_max_size_mb: int = 50

    def tzinfo(self) -> tzinfo:
        """Resolve the reference zone used for timestamps."""
        if self.time_zone.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(self.time_zone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {self.time_zone}") from e


def ensure_dirs() -> None:
    """Create the config directory."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)


def _config_to_dict(config: Config) -> dict[str, Any]:
    return {
        "format": {
            "time_zone": config.time_zone,
            "suppress_failed_names": config.suppress_failed_names,
        },
        "logging": {
            "line_log": config.line_log,
            "log_max_size_mb": config.log_max_size_mb,
        },
    }


def _dict_to_config(data: dict[str, Any]) -> Config:
    config = Config()
    if "format" in data:
        f = data["format"]
        config.time_zone = f.get("time_zone", config.time_zone)
        config.suppress_failed_names = f.get(
            "suppress_failed_names", config.suppress_failed_names
        )
    if "logging" in data:
        lg = data["logging"]
        config.line_log = lg.get("line_log", config.line_log)
        config.log_max_size_mb = lg.get("log_max_size_mb", config.log_max_size_mb)
    return config


def load_config() -> Config:
    """Load config from disk, falling back to defaults if it doesn't exist."""
    if not CONFIG_FILE.exists():
        return Config()
    data = tomllib.loads(CONFIG_FILE.read_text())
    return _dict_to_config(data)


def save_config(config: Config) -> None:
    """Save config to disk."""
    ensure_dirs()
    CONFIG_FILE.write_bytes(tomli_w.dumps(_config_to_dict(config)).encode())
