from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_CONFIG = {
    "max_batch_size": "100",      # items per persisted queue segment
    "cron_interval": "5",         # minutes of silence before a job looks stuck
    "time_limit": "20",           # seconds per execution window, 0 = unbounded
    "item_limit": "0",            # items per execution window, 0 = unbounded
    "memory_limit_mb": "0",       # RSS ceiling per window, 0 = unchecked
    "lock_duration": "60",        # seconds a window may hold the process lock
    "upload_dir": "uploads",
    "bucket_dir": "bucket",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())

INT_CONFIG_KEYS = {
    "max_batch_size", "cron_interval", "time_limit",
    "item_limit", "memory_limit_mb", "lock_duration",
}


@dataclass(frozen=True)
class Settings:
    max_batch_size: int = 100
    cron_interval: int = 5
    time_limit: int = 20
    item_limit: int = 0
    memory_limit_mb: int = 0
    lock_duration: int = 60
    upload_dir: Path = Path("uploads")
    bucket_dir: Path = Path("bucket")

    @classmethod
    def from_config(cls, cfg: Mapping[str, str]) -> "Settings":
        merged = {**DEFAULT_CONFIG, **{k: v for k, v in cfg.items() if k in ALLOWED_CONFIG_KEYS}}
        values = {}
        for key, raw in merged.items():
            if key in INT_CONFIG_KEYS:
                try:
                    values[key] = int(raw)
                except ValueError:
                    raise ValueError(f"{key} must be an integer, got {raw!r}")
            else:
                values[key] = Path(raw)
        return cls(**values)


def validate_config_value(key: str, value: str) -> str:
    """Normalise one config value, raising ValueError on anything unusable."""
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    value = str(value).strip()
    if key in INT_CONFIG_KEYS:
        try:
            number = int(value)
        except ValueError:
            raise ValueError(f"{key} must be an integer.")
        if number < 0:
            raise ValueError(f"{key} must be >= 0.")
        if key == "max_batch_size" and number == 0:
            raise ValueError("max_batch_size must be > 0.")
        return str(number)
    if not value:
        raise ValueError(f"{key} cannot be empty.")
    return value
