"""Token metadata -> rarity/genesis resolution."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .accessors import TRAIT_LIST_PATHS, TRAIT_TYPE_PATHS, TRAIT_VALUE_PATHS, first_match

logger = logging.getLogger(__name__)

DEFAULT_RARITIES: tuple[str, ...] = (
    "common",
    "rare",
    "epic",
    "legendary",
    "ancient",
    "mystic",
)

RARITY_TRAIT = "rarity"
GENESIS_TRAITS = ("genesis", "edition")
GENESIS_MARKERS = ("yes", "genesis")

# "Relic #123 (Epic)" -> "Epic"
_NAME_RARITY_RE = re.compile(r"#\d+\s*\(([^)]+)\)", re.IGNORECASE)


@dataclass(frozen=True)
class TokenMetadata:
    """Normalized rarity label and genesis flag of one token."""

    rarity: str
    genesis: bool = False

    @property
    def resolved(self) -> bool:
        return bool(self.rarity)

    def to_dict(self) -> dict[str, Any]:
        return {"rarity": self.rarity, "genesis": self.genesis}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def trait_type(trait: Any) -> str:
    """Lower-cased type name of a trait entry."""
    return _text(first_match(trait, TRAIT_TYPE_PATHS)).strip().lower()


def trait_value(trait: Any) -> str:
    return _text(first_match(trait, TRAIT_VALUE_PATHS))


def rarity_from_name(display_name: Optional[str]) -> str:
    """Extract the label from a ``#<number> (<label>)`` display name."""
    if not isinstance(display_name, str):
        return ""
    match = _NAME_RARITY_RE.search(display_name)
    if not match:
        return ""
    return match.group(1).strip()


def resolve_traits(
    traits: Optional[Iterable[Any]],
    display_name: Optional[str] = None,
) -> TokenMetadata:
    """Resolve rarity and genesis flag from a trait list.

    A trait typed ``rarity`` gives the rarity. A trait typed ``genesis`` or
    ``edition`` sets the genesis flag when its value contains ``yes`` or
    ``genesis``; a missing trait means not genesis. Without a rarity trait
    the label is recovered from ``display_name`` when it matches
    ``#<number> (<label>)``.

    Args:
        traits: List of trait mappings (order irrelevant)
        display_name: Optional token name used as a fallback

    Returns:
        TokenMetadata whose ``rarity`` is lower-cased, or empty if unresolved
    """
    rarity = ""
    genesis = False
    if isinstance(traits, (list, tuple)):
        for trait in traits:
            if not isinstance(trait, dict):
                continue
            kind = trait_type(trait)
            if kind == RARITY_TRAIT:
                rarity = trait_value(trait)
            elif kind in GENESIS_TRAITS:
                value = trait_value(trait).lower()
                genesis = any(marker in value for marker in GENESIS_MARKERS)

    if not rarity.strip():
        rarity = rarity_from_name(display_name)

    return TokenMetadata(rarity=rarity.strip().lower(), genesis=genesis)


def resolve_document(document: Any) -> TokenMetadata:
    """Apply :func:`resolve_traits` to a metadata document or listing item."""
    if not isinstance(document, dict):
        return TokenMetadata(rarity="")
    traits = first_match(document, TRAIT_LIST_PATHS)
    name = document.get("name")
    return resolve_traits(traits, name if isinstance(name, str) else None)


def is_recognized_rarity(rarity: str, rarities: Iterable[str] = DEFAULT_RARITIES) -> bool:
    return bool(rarity) and rarity in set(rarities)


class TokenMetadataIndex:
    """Thread-safe ``token_id -> TokenMetadata`` map filled by pool workers."""

    def __init__(self, entries: Optional[dict[str, TokenMetadata]] = None):
        self._lock = threading.Lock()
        self._entries: dict[str, TokenMetadata] = dict(entries or {})

    def set(self, token_id: str, metadata: TokenMetadata) -> None:
        with self._lock:
            self._entries[token_id] = metadata

    def get(self, token_id: str) -> Optional[TokenMetadata]:
        with self._lock:
            return self._entries.get(token_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {token_id: meta.to_dict() for token_id, meta in sorted(self._entries.items())}

    @classmethod
    def from_mapping(cls, raw: dict) -> "TokenMetadataIndex":
        """Build an index from ``{token_id: {rarity, genesis}}`` plain dicts."""
        index = cls()
        for token_id, value in raw.items():
            if isinstance(value, TokenMetadata):
                index.set(str(token_id), value)
            elif isinstance(value, dict):
                index.set(
                    str(token_id),
                    TokenMetadata(
                        rarity=_text(value.get("rarity")).strip().lower(),
                        genesis=bool(value.get("genesis")),
                    ),
                )
            else:
                logger.debug("Ignoring metadata entry %s of type %s", token_id, type(value))
        return index
