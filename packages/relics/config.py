"""Environment-driven configuration for the snapshot jobs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import ConfigError
from .metadata import DEFAULT_RARITIES

DEFAULT_OPENSEA_API_BASE = "https://api.opensea.io/api/v2"
DEFAULT_COLLECTION_SLUG = "relics-by-intuition"
DEFAULT_PHOSPHOR_API_BASE = "https://public-api.phosphor.xyz/v1"
DEFAULT_PHOSPHOR_COLLECTION_ID = "4e382831-8b4a-4ca6-8a02-846161d7f38f"
DEFAULT_POINTS_API_BASE = "https://portal.intuition.systems"
DEFAULT_SNAPSHOT_DIR = Path("static") / "relics-snapshot"


def _env_int(environ: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(float(raw))
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_str(environ: Mapping[str, str], *names: str, default: str = "") -> str:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return default


@dataclass(frozen=True)
class SnapshotConfig:
    """Settings shared by all snapshot jobs."""

    request_timeout_ms: int = 15000
    concurrency: int = 8
    page_delay_ms: int = 250
    page_limit: int = 200
    api_key: Optional[str] = None
    opensea_api_base: str = DEFAULT_OPENSEA_API_BASE
    collection_slug: str = DEFAULT_COLLECTION_SLUG
    phosphor_api_base: str = DEFAULT_PHOSPHOR_API_BASE
    phosphor_collection_id: str = DEFAULT_PHOSPHOR_COLLECTION_ID
    points_api_base: str = DEFAULT_POINTS_API_BASE
    rarities: tuple[str, ...] = DEFAULT_RARITIES
    snapshot_dir: Path = field(default_factory=lambda: DEFAULT_SNAPSHOT_DIR)

    @property
    def request_timeout(self) -> float:
        """Timeout in seconds."""
        return self.request_timeout_ms / 1000.0

    @property
    def page_delay(self) -> float:
        return self.page_delay_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SnapshotConfig":
        """Read configuration from environment variables.

        Raises:
            ConfigError: A numeric variable is malformed or out of range
        """
        env = os.environ if environ is None else environ

        rarities_raw = _env_str(env, "RELICS_RARITIES")
        if rarities_raw:
            rarities = tuple(
                part.strip().lower() for part in rarities_raw.split(",") if part.strip()
            )
            if not rarities:
                raise ConfigError("RELICS_RARITIES must list at least one rarity")
        else:
            rarities = DEFAULT_RARITIES

        snapshot_dir_raw = _env_str(env, "RELICS_SNAPSHOT_DIR")

        return cls(
            request_timeout_ms=_env_int(env, "REQUEST_TIMEOUT_MS", 15000, minimum=1),
            concurrency=_env_int(env, "CONCURRENCY", 8, minimum=1),
            page_delay_ms=_env_int(env, "RELIC_SNAPSHOT_DELAY", 250, minimum=0),
            page_limit=_env_int(env, "RELIC_SNAPSHOT_LIMIT", 200, minimum=1),
            api_key=_env_str(env, "OPENSEA_API_KEY", "NEXT_PUBLIC_OPENSEA_API_KEY") or None,
            opensea_api_base=_env_str(env, "OPENSEA_API_BASE", default=DEFAULT_OPENSEA_API_BASE),
            collection_slug=_env_str(env, "RELICS_COLLECTION_SLUG", default=DEFAULT_COLLECTION_SLUG),
            phosphor_api_base=_env_str(env, "PHOSPHOR_API_BASE", default=DEFAULT_PHOSPHOR_API_BASE),
            phosphor_collection_id=_env_str(
                env, "PHOSPHOR_COLLECTION_ID", default=DEFAULT_PHOSPHOR_COLLECTION_ID
            ),
            points_api_base=_env_str(env, "POINTS_API_BASE", default=DEFAULT_POINTS_API_BASE),
            rarities=rarities,
            snapshot_dir=Path(snapshot_dir_raw) if snapshot_dir_raw else DEFAULT_SNAPSHOT_DIR,
        )

    def with_overrides(self, **overrides: Any) -> "SnapshotConfig":
        """Return a copy with the non-None overrides applied (CLI flags)."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "concurrency" in changes and changes["concurrency"] < 1:
            raise ConfigError("concurrency must be >= 1")
        if "request_timeout_ms" in changes and changes["request_timeout_ms"] < 1:
            raise ConfigError("request timeout must be >= 1 ms")
        if "page_delay_ms" in changes and changes["page_delay_ms"] < 0:
            raise ConfigError("page delay must be >= 0 ms")
        if "page_limit" in changes and changes["page_limit"] < 1:
            raise ConfigError("page limit must be >= 1")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Loggable view; the API key is redacted."""
        return {
            "request_timeout_ms": self.request_timeout_ms,
            "concurrency": self.concurrency,
            "page_delay_ms": self.page_delay_ms,
            "page_limit": self.page_limit,
            "api_key": "<redacted>" if self.api_key else None,
            "opensea_api_base": self.opensea_api_base,
            "collection_slug": self.collection_slug,
            "phosphor_api_base": self.phosphor_api_base,
            "phosphor_collection_id": self.phosphor_collection_id,
            "points_api_base": self.points_api_base,
            "rarities": list(self.rarities),
            "snapshot_dir": str(self.snapshot_dir),
        }
