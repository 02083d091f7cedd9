"""HTTP client with per-call timeout, bounded retries, linear backoff and cancellation."""

import logging
import threading
import time
from typing import Any, Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import (
    DecodeError,
    FetchAborted,
    FetchError,
    FetchTimeoutError,
    HttpError,
    TransientFetchError,
    is_retryable,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.3
# How often a waiting caller checks its cancel event.
CANCEL_POLL_SECONDS = 0.05


class CancelRegistry:
    """Hands out cancel events per logical key.

    Calling :meth:`supersede` for a key that already has an in-flight call
    sets that call's event, so only the newest lookup for the key survives.
    Other keys are untouched.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, threading.Event] = {}

    def supersede(self, key: str) -> threading.Event:
        event = threading.Event()
        with self._lock:
            previous = self._events.get(key)
            self._events[key] = event
        if previous is not None:
            previous.set()
        return event

    def release(self, key: str, event: threading.Event) -> None:
        """Forget ``event`` if it is still the current one for ``key``."""
        with self._lock:
            if self._events.get(key) is event:
                del self._events[key]

    def cancel_all(self) -> None:
        with self._lock:
            events = list(self._events.values())
            self._events.clear()
        for event in events:
            event.set()


class _Attempt:
    """One request running on a helper thread so the caller can walk away from it."""

    def __init__(self, target: Callable[["_Attempt"], Any], name: str = "relics-fetch"):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[Exception] = None
        self._lock = threading.Lock()
        self._response: Optional[requests.Response] = None
        self._abandoned = False
        self._thread = threading.Thread(target=self._run, args=(target,), name=name, daemon=True)

    def start(self) -> "_Attempt":
        self._thread.start()
        return self

    def _run(self, target: Callable[["_Attempt"], Any]) -> None:
        try:
            self.result = target(self)
        except Exception as exc:
            self.error = exc
        finally:
            self.done.set()

    def track(self, response: requests.Response) -> None:
        """Remember the open response; close it at once if the caller already left."""
        with self._lock:
            self._response = response
            abandoned = self._abandoned
        if abandoned:
            response.close()

    def abandon(self) -> None:
        """Close the open response, if any, so a pending body read stops."""
        with self._lock:
            self._abandoned = True
            response = self._response
        if response is not None:
            response.close()


class HttpClient:
    """HTTP client wrapper with bounded retries and linear backoff.

    Each attempt runs on a helper thread. The caller waits for it until the
    attempt finishes, its ``cancel`` event is set, or ``timeout`` seconds pass
    in total. ``requests`` applies its own ``timeout`` per connect and per
    socket read, so a server that trickles bytes would otherwise keep one
    attempt alive well past ``timeout``; the total wait closes that gap. An
    abandoned attempt has its response closed and its result discarded.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        headers: Optional[dict] = None,
        pool_size: int = 10,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Base URL for relative paths ("" to pass full URLs)
            timeout: Total deadline of one attempt in seconds
            max_attempts: Maximum number of attempts per call
            backoff_seconds: Backoff unit; attempt N waits N * backoff_seconds
            headers: Headers sent with every request
            pool_size: Connection pool size (match the worker count)
            sleep: Override for the backoff sleep (tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.headers = {"accept": "application/json"}
        self.headers.update(headers or {})
        self.pool_size = max(1, pool_size)
        self._sleep = sleep

        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session sized for concurrent workers."""
        session = requests.Session()

        # Retries are driven by get_json so every attempt is counted and logged.
        retry_strategy = Retry(total=0, raise_on_status=False)

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=self.pool_size,
            pool_maxsize=self.pool_size,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not self.base_url:
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _backoff(self, attempt: int, cancel: Optional[threading.Event], url: str) -> None:
        delay = self.backoff_seconds * attempt
        if self._sleep is not None:
            self._sleep(delay)
        elif cancel is not None:
            if cancel.wait(delay):
                raise FetchAborted(url, "cancelled during backoff")
        else:
            time.sleep(delay)

    def fetch_once(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        on_response: Optional[Callable[[requests.Response], None]] = None,
    ) -> Any:
        """
        Perform a single GET and decode the JSON body.

        ``on_response`` sees the response as soon as its headers arrive,
        before the body is read.

        Raises:
            FetchTimeoutError: No response within the timeout
            TransientFetchError: Connection-level failure
            HttpError: Non-2xx status
            DecodeError: Body is not valid JSON
        """
        merged_headers = dict(self.headers)
        merged_headers.update(headers or {})
        try:
            response = self.session.get(
                url,
                params=params,
                headers=merged_headers,
                timeout=self.timeout,
                stream=True,
            )
        except requests.exceptions.Timeout as exc:
            raise FetchTimeoutError(url, f"timed out after {self.timeout:.1f}s") from exc
        except requests.exceptions.RequestException as exc:
            raise TransientFetchError(url, f"{type(exc).__name__}: {exc}") from exc

        if on_response is not None:
            on_response(response)

        try:
            if not 200 <= response.status_code < 300:
                raise HttpError(url, response.status_code, body=response.text[:500])
            return response.json()
        except ValueError as exc:
            # requests' JSONDecodeError is also a RequestException
            raise DecodeError(url, f"invalid JSON: {exc}") from exc
        except requests.exceptions.Timeout as exc:
            raise FetchTimeoutError(url, f"body read timed out after {self.timeout:.1f}s") from exc
        except requests.exceptions.RequestException as exc:
            raise TransientFetchError(url, f"{type(exc).__name__}: {exc}") from exc
        finally:
            response.close()

    def _attempt(
        self,
        url: str,
        params: Optional[dict],
        headers: Optional[dict],
        cancel: Optional[threading.Event],
    ) -> Any:
        """Run one attempt and wait for it, its cancel event, or the deadline."""
        attempt = _Attempt(
            lambda current: self.fetch_once(url, params=params, headers=headers, on_response=current.track)
        ).start()
        deadline = time.monotonic() + self.timeout

        while not attempt.done.wait(CANCEL_POLL_SECONDS):
            if cancel is not None and cancel.is_set():
                attempt.abandon()
                raise FetchAborted(url, "cancelled while in flight")
            if time.monotonic() >= deadline:
                attempt.abandon()
                raise FetchTimeoutError(url, f"no complete response within {self.timeout:.1f}s")

        if attempt.error is not None:
            raise attempt.error
        return attempt.result

    def get_json(
        self,
        path: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """
        Make a GET request with retry logic and return the parsed JSON.

        Args:
            path: URL path (appended to base_url) or absolute URL
            params: Query parameters
            headers: Additional headers
            cancel: Event that aborts the call when set, including while a
                request is in flight

        Returns:
            Parsed JSON response

        Raises:
            FetchAborted: ``cancel`` was set
            FetchError: Error of the last attempt once retries are exhausted,
                or the first non-retryable error
        """
        url = self.build_url(path)

        for attempt in range(1, self.max_attempts + 1):
            if cancel is not None and cancel.is_set():
                raise FetchAborted(url, "cancelled")
            try:
                payload = self._attempt(url, params, headers, cancel)
            except FetchAborted:
                raise
            except FetchError as exc:
                if cancel is not None and cancel.is_set():
                    raise FetchAborted(url, f"cancelled while in flight ({exc.message})") from exc
                if not is_retryable(exc) or attempt >= self.max_attempts:
                    raise
                logger.warning(
                    f"{exc.message} for {url}. "
                    f"Retrying in {self.backoff_seconds * attempt:.2f}s. "
                    f"Attempt {attempt}/{self.max_attempts}"
                )
                self._backoff(attempt, cancel, url)
                continue

            if cancel is not None and cancel.is_set():
                raise FetchAborted(url, "cancelled while in flight")
            return payload

        raise FetchError(url, "no attempts made")  # pragma: no cover
