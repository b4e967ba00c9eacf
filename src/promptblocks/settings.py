from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int, min_val: int | None = None) -> int:
    """Get integer from environment with optional minimum enforcement."""
    val = int(os.environ.get(name, str(default)))
    if min_val is not None and val < min_val:
        return min_val
    return val


@dataclass(frozen=True)
class Settings:
    """Static settings for the prompt builder.

    Keep defaults local and auditable; everything lives under data_dir.
    """

    root_dir: Path = Path(__file__).resolve().parents[2]
    data_dir: Path = Path(os.environ.get("PROMPTBLOCKS_DATA_DIR", root_dir / ".promptblocks-data"))
    db_name: str = "promptblocks.db"
    log_level: str = os.environ.get("PROMPTBLOCKS_LOG_LEVEL", "INFO")

    # Nesting limit for blocks (depth is zero-based, so roots sit at 0)
    max_depth: int = _env_int("PROMPTBLOCKS_MAX_DEPTH", 10, min_val=1)


settings = Settings()


def db_path() -> Path:
    """Resolve the database path, honouring a late PROMPTBLOCKS_DATA_DIR."""
    base = Path(os.environ.get("PROMPTBLOCKS_DATA_DIR", settings.data_dir))
    return base / settings.db_name
