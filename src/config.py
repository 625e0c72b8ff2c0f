from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name, str(default)).strip()
    try:
        return int(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be an integer; got {v!r}") from err


def _getenv_float(name: str, default: float) -> float:
    v = os.getenv(name, str(default)).strip()
    try:
        return float(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be a number; got {v!r}") from err


def _getenv_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _getenv_list_str(name: str, default_csv: str) -> list[str]:
    raw = os.getenv(name, default_csv).strip()
    return [tok for tok in (t.strip() for t in raw.split(",")) if tok]


# Load .env from project root if present
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

ALLOCATION_CONFIG_PATH = ROOT / "docs" / "allocation.yaml"

# Real-estate activity codes; used when docs/allocation.yaml is missing.
DEFAULT_TARGET_SETS: dict[str, list[str]] = {
    "real_estate": ["6821801", "6822600"],
}
DEFAULT_TARGET_SET = "real_estate"


@dataclass(frozen=True)
class Settings:
    # Search
    PHONE_MIN_DIGITS: int = _getenv_int("PHONE_MIN_DIGITS", 10)
    SEARCH_DEFAULT_PAGE_SIZE: int = _getenv_int("SEARCH_DEFAULT_PAGE_SIZE", 50)
    SEARCH_MAX_PAGE_SIZE: int = _getenv_int("SEARCH_MAX_PAGE_SIZE", 100)
    # 0 disables the deadline
    COUNT_TIMEOUT_SEC: float = _getenv_float("COUNT_TIMEOUT_SEC", 10.0)

    # Allocation
    PHONE_AREA_PREFIX: str = _getenv_str("PHONE_AREA_PREFIX", "55({ddd})")
    ALLOCATION_DEFAULT_LIMIT: int = _getenv_int("ALLOCATION_DEFAULT_LIMIT", 50)
    ALLOCATION_MAX_LIMIT: int = _getenv_int("ALLOCATION_MAX_LIMIT", 1000)

    # Admin routes
    ADMIN_API_KEY: str = _getenv_str("ADMIN_API_KEY", "")
    ADMIN_ALLOWED_IPS: list[str] = field(
        default_factory=lambda: _getenv_list_str("ADMIN_ALLOWED_IPS", "")
    )

    LOG_LEVEL: str = _getenv_str("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class AllocationConfig:
    default_limit: int
    target_sets: dict[str, list[str]]

    def codes_for(self, name: str) -> list[str]:
        """
        Return the codes of a named target set, raising ValueError for
        unknown names so the API/CLI can report it as bad input.
        """
        try:
            return list(self.target_sets[name])
        except KeyError as err:
            known = ", ".join(sorted(self.target_sets)) or "(none)"
            raise ValueError(f"Unknown target set {name!r}; known sets: {known}") from err

    def resolve(self, codes: list[str] | None = None, set_name: str | None = None) -> list[str]:
        """
        Pick the target codes for an allocation request: explicit codes win,
        then a named set, then DEFAULT_TARGET_SET.
        """
        if codes:
            return list(codes)
        return self.codes_for(set_name or DEFAULT_TARGET_SET)


def load_allocation_config(path: Path | None = None) -> AllocationConfig:
    """
    Load allocation target sets from docs/allocation.yaml.

    Expected shape:

      default_limit: 50
      target_sets:
        real_estate: ["6821801", "6822600"]

    A missing file yields the built-in real-estate set. Codes are always
    returned as strings, even when YAML parsed them as integers.
    """
    cfg_path = path or ALLOCATION_CONFIG_PATH
    default_limit = settings.ALLOCATION_DEFAULT_LIMIT
    if not cfg_path.exists():
        return AllocationConfig(
            default_limit=default_limit,
            target_sets={k: list(v) for k, v in DEFAULT_TARGET_SETS.items()},
        )

    data: Any = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{cfg_path} must contain a mapping at the top level")

    raw_sets = data.get("target_sets") or {}
    if not isinstance(raw_sets, dict):
        raise ValueError(f"{cfg_path}: target_sets must be a mapping of name -> codes")

    target_sets: dict[str, list[str]] = {}
    for name, codes in raw_sets.items():
        if not isinstance(codes, list):
            raise ValueError(f"{cfg_path}: target set {name!r} must be a list")
        target_sets[str(name)] = [str(c).strip() for c in codes if str(c).strip()]

    limit_raw = data.get("default_limit", default_limit)
    try:
        limit = int(limit_raw)
    except (TypeError, ValueError) as err:
        raise ValueError(f"{cfg_path}: default_limit must be an integer") from err

    return AllocationConfig(default_limit=limit, target_sets=target_sets)


settings: Settings = Settings()

__all__ = [
    "Settings",
    "AllocationConfig",
    "DEFAULT_TARGET_SET",
    "DEFAULT_TARGET_SETS",
    "load_allocation_config",
    "settings",
]
