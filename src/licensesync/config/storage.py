"""Internal license store configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import env_bool

APP_DIR_NAME: Final[str] = "licensesync"
DEFAULT_DB_FILENAME: Final[str] = "licenses.db"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    echo: bool = False


def default_data_dir() -> Path:
    """Return the per-user directory holding the local sqlite store."""

    override = os.getenv("LICENSESYNC_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        root = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        root = Path(base) if base else (Path.home() / ".local" / "share")
    return (root / APP_DIR_NAME).expanduser().resolve()


def get_database_config() -> DatabaseConfig:
    echo = env_bool("DATABASE_ECHO", default=False)
    uri = os.getenv("DATABASE_URI")
    if uri:
        return DatabaseConfig(uri=uri, echo=echo)
    data_dir = default_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return DatabaseConfig(uri=f"sqlite+pysqlite:///{data_dir / DEFAULT_DB_FILENAME}", echo=echo)
