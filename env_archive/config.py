"""
Settings

Resolved by the CLI before any engine call; the engine itself never
reads the environment.

Database location, highest priority first:
1. --database / -d flag
2. ENV_ARCHIVE_DATABASE environment variable
3. "database" key in the settings file
4. ~/.env_archive

The optional settings file is JSON, at ~/.config/env-archive/config.json
unless ENV_ARCHIVE_CONFIG points elsewhere:

    {
      "database": "~/archives/env.db",
      "timezone": "Asia/Tokyo",
      "ignore_dirs": ["node_modules", ".git", "vendor"],
      "max_file_size": 1048576
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import timezone as dt_timezone
from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .crawler import DEFAULT_IGNORE_DIRS
from .errors import ValidationError

DATABASE_ENV = "ENV_ARCHIVE_DATABASE"
CONFIG_ENV = "ENV_ARCHIVE_CONFIG"

DEFAULT_DATABASE_NAME = ".env_archive"
DEFAULT_CONFIG_PATH = Path("~/.config/env-archive/config.json")

# Default: 10 MB max archived file size
# Note: 0 disables the limit
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


def default_database_path() -> Path:
    return Path.home() / DEFAULT_DATABASE_NAME


@dataclass
class Settings:
    database: Path
    timezone: str = "UTC"
    ignore_dirs: frozenset = field(default_factory=lambda: DEFAULT_IGNORE_DIRS)
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone)


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return dt_timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {name!r}") from e


def read_config_file(path: Path) -> dict:
    """Read the JSON settings file; a missing file means no overrides."""
    path = Path(path).expanduser()
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid settings file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Invalid settings file {path}: expected a JSON object")
    return data


def load_settings(
    database: str | None = None,
    timezone: str | None = None,
    environ: dict | None = None,
) -> Settings:
    """Merge flags, environment and settings file into a Settings."""
    environ = os.environ if environ is None else environ
    config_path = environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    config = read_config_file(Path(config_path))

    db = database or environ.get(DATABASE_ENV) or config.get("database")
    db_path = Path(db).expanduser() if db else default_database_path()

    max_file_size = config.get("max_file_size", DEFAULT_MAX_FILE_SIZE)
    if not isinstance(max_file_size, int) or max_file_size < 0:
        raise ValidationError(
            f"Invalid config: max_file_size must be an integer >= 0, got {max_file_size!r}\n"
            f"  Use 0 to disable the limit"
        )

    ignore_dirs = config.get("ignore_dirs", sorted(DEFAULT_IGNORE_DIRS))
    if not isinstance(ignore_dirs, list) or not all(isinstance(d, str) for d in ignore_dirs):
        raise ValidationError(
            f"Invalid config: ignore_dirs must be a list of directory names, got {ignore_dirs!r}"
        )

    tz_name = timezone or config.get("timezone", "UTC")
    resolve_timezone(tz_name)

    return Settings(
        database=db_path,
        timezone=tz_name,
        ignore_dirs=frozenset(ignore_dirs),
        max_file_size=max_file_size,
    )
