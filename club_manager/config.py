from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os

from dotenv import load_dotenv

DEFAULT_DATA_DIR = "data"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5000
DEFAULT_USER_HEADER = "X-User-Id"
DEFAULT_ADMIN_HEADER = "X-User-Admin"


@dataclass(frozen=True)
class ClubSettings:
    data_dir: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    user_header: str = DEFAULT_USER_HEADER
    admin_header: str = DEFAULT_ADMIN_HEADER


def load_settings(environ: Mapping[str, str] | None = None) -> ClubSettings:
    """Read settings from ``environ``, or from the process environment after loading ``.env``."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    raw_port = environ.get("CLUB_PORT", str(DEFAULT_PORT))
    try:
        port = int(raw_port)
    except ValueError as error:
        raise ValueError(f"CLUB_PORT must be an integer, got {raw_port!r}") from error
    if not 0 < port < 65536:
        raise ValueError(f"CLUB_PORT out of range: {port}")

    return ClubSettings(
        data_dir=Path(environ.get("CLUB_DATA_DIR", DEFAULT_DATA_DIR)),
        host=environ.get("CLUB_HOST", DEFAULT_HOST),
        port=port,
        user_header=environ.get("CLUB_USER_HEADER", DEFAULT_USER_HEADER),
        admin_header=environ.get("CLUB_ADMIN_HEADER", DEFAULT_ADMIN_HEADER),
    )
