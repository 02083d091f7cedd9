"""Phosphor metadata API client (per-token metadata documents)."""

import logging
import threading
from typing import Any, Iterable, Optional
from urllib.parse import quote

from .config import DEFAULT_PHOSPHOR_API_BASE, DEFAULT_PHOSPHOR_COLLECTION_ID
from .errors import PermanentItemError
from .http_client import DEFAULT_TIMEOUT_SECONDS, HttpClient
from .metadata import DEFAULT_RARITIES, TokenMetadata, is_recognized_rarity, resolve_document

logger = logging.getLogger(__name__)


class PhosphorClient:
    """Client for the public Phosphor metadata endpoint."""

    def __init__(
        self,
        collection_id: str = DEFAULT_PHOSPHOR_COLLECTION_ID,
        base_url: str = DEFAULT_PHOSPHOR_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        pool_size: int = 10,
        rarities: Iterable[str] = DEFAULT_RARITIES,
    ):
        """
        Initialize Phosphor client.

        Args:
            collection_id: Phosphor collection UUID
            base_url: Phosphor API base URL
            timeout: Request timeout in seconds
            pool_size: Connection pool size (match the worker count)
            rarities: Recognized rarity labels
        """
        self.client = HttpClient(base_url=base_url, timeout=timeout, pool_size=pool_size)
        self.collection_id = collection_id
        self.rarities = frozenset(rarities)

    def metadata_path(self, token_id: str) -> str:
        return f"/metadata/{self.collection_id}/{quote(str(token_id), safe='')}"

    def fetch_document(self, token_id: str, cancel: Optional[threading.Event] = None) -> Any:
        """GET /metadata/<collection>/<token> (raw JSON document)."""
        return self.client.get_json(self.metadata_path(token_id), cancel=cancel)

    def fetch_token(self, token_id: str, cancel: Optional[threading.Event] = None) -> TokenMetadata:
        """
        Fetch and resolve the metadata of one token.

        Raises:
            FetchError: Request failed after retries
            PermanentItemError: Document is malformed or its rarity cannot
                be resolved to a recognized label
        """
        document = self.fetch_document(token_id, cancel=cancel)
        if not isinstance(document, dict):
            raise PermanentItemError(
                token_id, f"metadata document is {type(document).__name__}, expected object"
            )
        metadata = resolve_document(document)
        if not metadata.resolved:
            raise PermanentItemError(token_id, "missing rarity")
        if not is_recognized_rarity(metadata.rarity, self.rarities):
            raise PermanentItemError(token_id, f"unrecognized rarity {metadata.rarity!r}")
        return metadata
