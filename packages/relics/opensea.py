"""OpenSea collection crawler: walks the cursor-paginated NFT listing."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Optional

from .accessors import OWNER_PATHS, first_match
from .aggregation import HolderAsset
from .config import DEFAULT_COLLECTION_SLUG, DEFAULT_OPENSEA_API_BASE
from .errors import CrawlError, FetchError
from .http_client import DEFAULT_TIMEOUT_SECONDS, HttpClient
from .metadata import DEFAULT_RARITIES, is_recognized_rarity, resolve_document
from .normalization import normalize_token_id, normalize_wallet

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 200
DEFAULT_PAGE_DELAY_SECONDS = 0.25

SKIP_NO_OWNER = "missing_owner"
SKIP_UNRECOGNIZED_RARITY = "unrecognized_rarity"
SKIP_DUPLICATE = "duplicate_token"


@dataclass
class ListingPage:
    """One page of the listing: raw items plus the cursor of the next page."""

    items: list[dict]
    next_cursor: Optional[str]

    @classmethod
    def from_api_response(cls, body: Any) -> "ListingPage":
        if not isinstance(body, dict):
            raise CrawlError(f"Unexpected listing response type: {type(body).__name__}")
        raw_items = body.get("nfts")
        if raw_items is None:
            raw_items = body.get("items", [])
        if not isinstance(raw_items, list):
            raise CrawlError("Listing response items are not a list")
        cursor = body.get("next")
        if cursor is not None and not isinstance(cursor, str):
            cursor = str(cursor)
        return cls(
            items=[item for item in raw_items if isinstance(item, dict)],
            next_cursor=cursor or None,
        )


@dataclass
class CrawlResult:
    """Result of walking the whole listing."""

    assets: list[HolderAsset] = field(default_factory=list)
    pages_fetched: int = 0
    items_seen: int = 0
    skip_reasons: Counter = field(default_factory=Counter)

    @property
    def items_skipped(self) -> int:
        return sum(self.skip_reasons.values())


def extract_owner(item: dict) -> str:
    """Normalized owner wallet of a listing item ("" when unresolvable)."""
    return normalize_wallet(first_match(item, OWNER_PATHS))


def extract_token_id(item: dict) -> str:
    return normalize_token_id(
        first_match(item, (("identifier",), ("token_id",), ("tokenId",), ("id",)))
    )


class OpenSeaCrawler:
    """Client for the OpenSea v2 collection NFT listing."""

    def __init__(
        self,
        collection_slug: str = DEFAULT_COLLECTION_SLUG,
        base_url: str = DEFAULT_OPENSEA_API_BASE,
        api_key: Optional[str] = None,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        page_delay: float = DEFAULT_PAGE_DELAY_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        rarities: Iterable[str] = DEFAULT_RARITIES,
        max_pages: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the crawler.

        Args:
            collection_slug: Collection to enumerate
            base_url: OpenSea API base URL
            api_key: Sent as ``x-api-key`` when provided
            page_limit: Items per page
            page_delay: Seconds to wait between pages (0 disables)
            timeout: Request timeout in seconds
            rarities: Recognized rarity labels; others are skipped
            max_pages: Optional hard cap on pages walked
            sleep: Sleep function used for the page delay
        """
        headers = {"x-api-key": api_key} if api_key else None
        self.client = HttpClient(base_url=base_url, timeout=timeout, headers=headers)
        self.collection_slug = collection_slug
        self.page_limit = page_limit
        self.page_delay = page_delay
        self.rarities = frozenset(rarities)
        self.max_pages = max_pages
        self._sleep = sleep

    def fetch_page(self, cursor: Optional[str] = None) -> ListingPage:
        """
        Fetch a single listing page.

        GET /collection/<slug>/nfts?limit=N[&next=<cursor>]

        Raises:
            FetchError: Request failed after retries
            CrawlError: Response has an unexpected shape
        """
        params: dict[str, Any] = {"limit": self.page_limit}
        if cursor:
            params["next"] = cursor
        logger.debug(f"Fetching listing page: cursor={cursor!r}")
        body = self.client.get_json(f"/collection/{self.collection_slug}/nfts", params=params)
        return ListingPage.from_api_response(body)

    def iter_pages(self) -> Iterator[ListingPage]:
        """Yield pages until the listing returns no ``next`` cursor."""
        cursor: Optional[str] = None
        seen_cursors: set[str] = set()
        pages = 0
        while True:
            try:
                page = self.fetch_page(cursor)
            except FetchError as exc:
                raise CrawlError(f"Failed to fetch listing page {pages + 1}: {exc}") from exc
            pages += 1
            yield page

            cursor = page.next_cursor
            if not cursor:
                return
            if cursor in seen_cursors:
                raise CrawlError(f"Listing returned a repeated cursor {cursor!r}")
            seen_cursors.add(cursor)
            if self.max_pages is not None and pages >= self.max_pages:
                logger.warning(f"Stopping crawl at max_pages={self.max_pages} with more pages left")
                return
            if self.page_delay > 0:
                self._sleep(self.page_delay)

    def extract_asset(self, item: dict) -> tuple[Optional[HolderAsset], Optional[str]]:
        """Turn a listing item into a HolderAsset, or return the skip reason."""
        owner = extract_owner(item)
        if not owner:
            return None, SKIP_NO_OWNER
        metadata = resolve_document(item)
        if not is_recognized_rarity(metadata.rarity, self.rarities):
            return None, SKIP_UNRECOGNIZED_RARITY
        asset = HolderAsset(
            wallet=owner,
            token_id=extract_token_id(item),
            rarity=metadata.rarity,
            genesis=metadata.genesis,
        )
        return asset, None

    def crawl(self) -> CrawlResult:
        """
        Walk the listing to completion.

        Returns:
            CrawlResult with every qualifying item exactly once

        Raises:
            CrawlError: A page could not be fetched or parsed
        """
        result = CrawlResult()
        seen_tokens: set[str] = set()

        for page in self.iter_pages():
            result.pages_fetched += 1
            for item in page.items:
                result.items_seen += 1
                asset, reason = self.extract_asset(item)
                if asset is None:
                    result.skip_reasons[reason] += 1
                    continue
                if asset.token_id:
                    if asset.token_id in seen_tokens:
                        result.skip_reasons[SKIP_DUPLICATE] += 1
                        continue
                    seen_tokens.add(asset.token_id)
                result.assets.append(asset)

            logger.info(
                f"Fetched page {result.pages_fetched}: {len(page.items)} items, "
                f"{len(result.assets)} qualifying so far"
            )

        logger.info(
            f"Completed crawl: {len(result.assets)} assets from {result.items_seen} items "
            f"in {result.pages_fetched} pages ({result.items_skipped} skipped)"
        )
        return result
