from __future__ import annotations

import os
from datetime import UTC, datetime


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat()


def split_env_list(raw: str | None, separator: str = os.pathsep) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(separator) if item.strip()]
