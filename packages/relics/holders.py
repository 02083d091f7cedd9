"""Build the holder token list from a bulk holder export."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .accessors import first_match
from .normalization import (
    normalize_holder_tokens,
    normalize_token_id,
    normalize_wallet,
    sort_token_ids,
)

logger = logging.getLogger(__name__)

TOKEN_ID_PATHS = (("token_id",), ("tokenId",))


@dataclass
class HolderListResult:
    holders: dict[str, list[str]] = field(default_factory=dict)
    rows_total: int = 0
    rows_skipped: int = 0


def build_holder_list(export: Any) -> HolderListResult:
    """Convert ``{holders: [{address, token_id, quantity}]}`` into ``{address: [ids]}``.

    Rows without an address or token id are skipped. Token ids are
    deduplicated and sorted per wallet.
    """
    rows = export.get("holders") if isinstance(export, dict) else None
    if not isinstance(rows, list):
        rows = []

    result = HolderListResult(rows_total=len(rows))
    raw: dict[str, list[str]] = {}
    for row in rows:
        if not isinstance(row, dict):
            result.rows_skipped += 1
            continue
        address = normalize_wallet(row.get("address"))
        token_id = normalize_token_id(first_match(row, TOKEN_ID_PATHS))
        if not address or not token_id:
            result.rows_skipped += 1
            continue
        raw.setdefault(address, []).append(token_id)

    result.holders = normalize_holder_tokens(raw)
    if result.rows_skipped:
        logger.info("Skipped %d holder rows without address or token id", result.rows_skipped)
    return result


def unique_token_ids(holders: dict[str, list[str]]) -> list[str]:
    """Every token id held by any wallet, once, in deterministic order."""
    return sort_token_ids(token for tokens in holders.values() for token in tokens)
