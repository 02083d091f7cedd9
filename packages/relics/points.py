"""Portal points API client."""

import logging
import threading
from typing import Any, Optional, Union

from .accessors import POINTS_TOTAL_PATHS, first_match, is_finite_number
from .config import DEFAULT_POINTS_API_BASE
from .http_client import DEFAULT_TIMEOUT_SECONDS, CancelRegistry, HttpClient

logger = logging.getLogger(__name__)

Number = Union[int, float]


def extract_points_total(payload: Any) -> Number:
    """Return the first present and finite total, or 0.

    Integral totals come back as ``int`` so snapshots do not show ``12.0``.
    """
    value = first_match(payload, POINTS_TOTAL_PATHS, accept=is_finite_number)
    if value is None:
        return 0
    number = float(value)
    if number.is_integer():
        return int(number)
    return number


class PointsClient:
    """Client for ``/resources/get-points``."""

    def __init__(
        self,
        base_url: str = DEFAULT_POINTS_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        pool_size: int = 10,
    ):
        self.client = HttpClient(base_url=base_url, timeout=timeout, pool_size=pool_size)
        self.cancels = CancelRegistry()

    def close(self) -> None:
        """Abort outstanding lookups and release pooled connections."""
        self.cancels.cancel_all()
        self.client.close()

    def fetch_total(self, address: str, cancel: Optional[threading.Event] = None) -> Number:
        """
        Fetch the points total for one address.

        Raises:
            FetchError: Request failed after retries
        """
        payload = self.client.get_json(
            "/resources/get-points",
            params={"accountId": address},
            cancel=cancel,
        )
        return extract_points_total(payload)

    def lookup(self, address: str) -> Number:
        """Interactive lookup: a newer lookup for the same address aborts this one.

        Raises:
            FetchAborted: Superseded by a later lookup for ``address``
            FetchError: Request failed after retries
        """
        key = address.strip().lower()
        cancel = self.cancels.supersede(key)
        try:
            return self.fetch_total(address, cancel=cancel)
        finally:
            self.cancels.release(key, cancel)
