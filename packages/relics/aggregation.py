"""Wallet -> rarity -> {normal, genesis} aggregation.

Counts are accumulated first and pruned once at the end, so the result does
not depend on the order in which tokens are folded in.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

from .metadata import TokenMetadata, TokenMetadataIndex
from .normalization import normalize_wallet

logger = logging.getLogger(__name__)

DEFAULT_SHARDS = 16

HolderSnapshot = dict[str, dict[str, dict[str, int]]]


@dataclass
class RarityCounts:
    normal: int = 0
    genesis: int = 0

    def add(self, genesis: bool, amount: int = 1) -> None:
        if genesis:
            self.genesis += amount
        else:
            self.normal += amount

    def to_dict(self) -> dict[str, int]:
        """Only positive counts are emitted."""
        entry: dict[str, int] = {}
        if self.genesis > 0:
            entry["genesis"] = self.genesis
        if self.normal > 0:
            entry["normal"] = self.normal
        return entry


@dataclass(frozen=True)
class HolderAsset:
    """One token with its owner and resolved rarity (crawler output)."""

    wallet: str
    token_id: str
    rarity: str
    genesis: bool = False


class _Shard:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.wallets: dict[str, dict[str, RarityCounts]] = {}


class HolderCounts:
    """Accumulator for aggregated holder counts.

    Wallets are spread over shards by a hash of the normalized address and
    each shard has its own lock, so concurrent ``add`` calls for the same
    wallet are serialized while different wallets rarely contend.
    """

    def __init__(self, shards: int = DEFAULT_SHARDS):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards = [_Shard() for _ in range(shards)]

    def _shard_for(self, wallet: str) -> _Shard:
        digest = hashlib.blake2b(wallet.encode("utf-8"), digest_size=4).digest()
        return self._shards[int.from_bytes(digest, "big") % len(self._shards)]

    def add(self, wallet: str, rarity: str, genesis: bool, amount: int = 1) -> bool:
        """Count ``amount`` tokens. Returns False when wallet or rarity is empty."""
        key = normalize_wallet(wallet)
        label = (rarity or "").strip().lower()
        if not key or not label:
            return False
        shard = self._shard_for(key)
        with shard.lock:
            buckets = shard.wallets.setdefault(key, {})
            buckets.setdefault(label, RarityCounts()).add(genesis, amount)
        return True

    def add_metadata(self, wallet: str, metadata: Optional[TokenMetadata]) -> bool:
        if metadata is None or not metadata.resolved:
            return False
        return self.add(wallet, metadata.rarity, metadata.genesis)

    def to_snapshot(self) -> HolderSnapshot:
        """Prune empty buckets and wallets; keys come out sorted."""
        merged: dict[str, dict[str, RarityCounts]] = {}
        for shard in self._shards:
            with shard.lock:
                for wallet, buckets in shard.wallets.items():
                    merged[wallet] = dict(buckets)

        output: HolderSnapshot = {}
        for wallet in sorted(merged):
            rarities: dict[str, dict[str, int]] = {}
            for rarity in sorted(merged[wallet]):
                entry = merged[wallet][rarity].to_dict()
                if entry:
                    rarities[rarity] = entry
            if rarities:
                output[wallet] = rarities
        return output


MetadataLookup = Union[TokenMetadataIndex, Mapping[str, TokenMetadata]]


def aggregate_holders(
    holder_tokens: Mapping[str, Iterable[str]],
    metadata_index: MetadataLookup,
) -> HolderSnapshot:
    """Fold a holder token list and a metadata index into holder counts.

    Tokens missing from the index or with an unresolved rarity are skipped
    and contribute to no bucket.
    """
    counts = HolderCounts()
    skipped = 0
    for wallet, token_ids in holder_tokens.items():
        for token_id in token_ids:
            metadata = metadata_index.get(str(token_id))
            if not counts.add_metadata(wallet, metadata):
                skipped += 1
    if skipped:
        logger.info("Skipped %d holdings without resolved metadata", skipped)
    return counts.to_snapshot()


def aggregate_assets(assets: Iterable[HolderAsset]) -> HolderSnapshot:
    counts = HolderCounts()
    for asset in assets:
        counts.add(asset.wallet, asset.rarity, asset.genesis)
    return counts.to_snapshot()


def merge_counts(*snapshots: Mapping[str, Mapping[str, Mapping[str, int]]]) -> HolderSnapshot:
    """Sum several aggregated snapshots into one (order-independent)."""
    counts = HolderCounts()
    for snapshot in snapshots:
        for wallet, rarities in snapshot.items():
            for rarity, entry in rarities.items():
                normal = int(entry.get("normal") or 0)
                genesis = int(entry.get("genesis") or 0)
                if normal > 0:
                    counts.add(wallet, rarity, False, normal)
                if genesis > 0:
                    counts.add(wallet, rarity, True, genesis)
    return counts.to_snapshot()


def total_relics(rarities: Mapping[str, Mapping[str, int]]) -> int:
    return sum(
        int(entry.get("normal") or 0) + int(entry.get("genesis") or 0)
        for entry in rarities.values()
    )
