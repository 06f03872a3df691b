"""Environment-driven configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import OperatorCode
from .schedule import DEFAULT_RUN_HOUR, DEFAULT_TIMEZONE


@dataclass(frozen=True)
class WatcherConfig:
    database_url: str = "sqlite:///data/notices.db"
    document_root: str = "data"
    operators: Tuple[str, ...] = ("KMB", "CTB")
    timezone: str = DEFAULT_TIMEZONE
    run_hour: int = DEFAULT_RUN_HOUR
    request_timeout: float = 20.0
    max_workers: int = 2
    # 0 means every route in the catalog is scanned.
    route_caps: Mapping[str, int] = field(default_factory=dict)

    def route_cap(self, operator_code: str) -> Optional[int]:
        cap = self.route_caps.get(operator_code, 0)
        return cap or None


def load_config(env: Mapping[str, str] | None = None) -> WatcherConfig:
    """Build a WatcherConfig from environment variables."""
    if env is None:
        env = os.environ

    operators = tuple(
        code.strip().upper()
        for code in env.get("WATCH_OPERATORS", "KMB,CTB").split(",")
        if code.strip()
    )
    if not operators:
        raise ValueError("WATCH_OPERATORS must name at least one operator")
    for code in operators:
        if code not in OperatorCode.__members__:
            raise ValueError(f"Unknown operator code in WATCH_OPERATORS: {code}")

    timezone = env.get("WATCH_TIMEZONE", DEFAULT_TIMEZONE)
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown WATCH_TIMEZONE: {timezone}") from exc

    run_hour = _int(env, "WATCH_RUN_HOUR", DEFAULT_RUN_HOUR)
    if not 0 <= run_hour <= 23:
        raise ValueError("WATCH_RUN_HOUR must be between 0 and 23")

    request_timeout = _float(env, "REQUEST_TIMEOUT_SECONDS", 20.0)
    if request_timeout <= 0:
        raise ValueError("REQUEST_TIMEOUT_SECONDS must be positive")

    max_workers = _int(env, "WATCH_MAX_WORKERS", 2)
    if max_workers < 1:
        raise ValueError("WATCH_MAX_WORKERS must be at least 1")

    route_caps: Dict[str, int] = {}
    for code in operators:
        cap = _int(env, f"MAX_ROUTES_{code}", 0)
        if cap < 0:
            raise ValueError(f"MAX_ROUTES_{code} must not be negative")
        route_caps[code] = cap

    return WatcherConfig(
        database_url=env.get("DATABASE_URL", "sqlite:///data/notices.db"),
        document_root=env.get("DOCUMENT_ROOT", "data"),
        operators=operators,
        timezone=timezone,
        run_hour=run_hour,
        request_timeout=request_timeout,
        max_workers=max_workers,
        route_caps=route_caps,
    )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
