"""Normalization helpers for wallet addresses and token ids."""

from __future__ import annotations

from typing import Iterable, Optional


def normalize_wallet(value: Optional[object]) -> str:
    """Normalize a wallet address to a trimmed lowercase string.

    Returns empty string when value is falsy or only whitespace.
    """
    if value is None:
        return ""
    cleaned = str(value).strip()
    if not cleaned:
        return ""
    return cleaned.lower()


def normalize_token_id(value: Optional[object]) -> str:
    """String form of a token id ("" when missing)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def token_sort_key(token_id: str) -> tuple:
    """Sort key: plain decimal ids first in numeric order, then the rest lexicographically.

    Ties on the numeric value ("05" and "5") fall back to the text itself so the
    order never depends on set iteration.
    """
    if token_id.isascii() and token_id.isdigit():
        return (0, int(token_id), token_id)
    return (1, 0, token_id)


def sort_token_ids(token_ids: Iterable[object]) -> list[str]:
    """Deduplicate and sort token ids deterministically."""
    unique = {normalize_token_id(token_id) for token_id in token_ids}
    unique.discard("")
    return sorted(unique, key=token_sort_key)


def normalize_holder_tokens(holders: dict) -> dict[str, list[str]]:
    """Normalize a raw ``{address: [token ids]}`` mapping.

    Keys that differ only in case are merged. Entries with an empty address
    or no usable token ids are dropped.
    """
    merged: dict[str, set[str]] = {}
    for raw_address, raw_tokens in holders.items():
        address = normalize_wallet(raw_address)
        if not address:
            continue
        if not isinstance(raw_tokens, (list, tuple)):
            continue
        tokens = merged.setdefault(address, set())
        for token in raw_tokens:
            token_id = normalize_token_id(token)
            if token_id:
                tokens.add(token_id)

    return {
        address: sorted(tokens, key=token_sort_key)
        for address, tokens in sorted(merged.items())
        if tokens
    }
