"""Offline tests for the retrying JSON fetcher."""

from __future__ import annotations

import threading
import time

import pytest
import requests

from _fakes import FakeSession, make_response
from packages.relics.errors import (
    DecodeError,
    FetchAborted,
    FetchTimeoutError,
    HttpError,
    TransientFetchError,
)
from packages.relics.http_client import CancelRegistry, HttpClient


def _client(outcomes, on_get=None, **kwargs):
    sleeps: list[float] = []
    client = HttpClient(base_url="https://api.example.test/v1", sleep=sleeps.append, **kwargs)
    client.session = FakeSession(outcomes, on_get=on_get)
    return client, sleeps


def test_success_on_third_attempt_returns_result_once_with_two_backoffs():
    client, sleeps = _client(
        [
            make_response(503, {"error": "busy"}),
            make_response(502, {"error": "bad gateway"}),
            make_response(200, {"ok": True}),
        ]
    )

    assert client.get_json("/thing") == {"ok": True}
    assert len(client.session.calls) == 3
    assert sleeps == pytest.approx([0.3, 0.6])


def test_last_attempt_error_is_surfaced():
    client, sleeps = _client(
        [
            make_response(500, {}),
            requests.exceptions.ConnectionError("reset"),
            make_response(504, {}),
        ]
    )

    with pytest.raises(HttpError) as excinfo:
        client.get_json("/thing")

    assert excinfo.value.status == 504
    assert len(client.session.calls) == 3
    assert len(sleeps) == 2


def test_timeouts_are_retried_then_raised_as_fetch_timeout():
    client, sleeps = _client([requests.exceptions.ReadTimeout("slow")] * 3, timeout=2.5)

    with pytest.raises(FetchTimeoutError):
        client.get_json("/thing")

    assert len(client.session.calls) == 3
    assert all(call["timeout"] == 2.5 for call in client.session.calls)
    assert sleeps == pytest.approx([0.3, 0.6])


def test_connection_error_maps_to_transient_error():
    client, _ = _client([requests.exceptions.ConnectionError("dns")] * 3)

    with pytest.raises(TransientFetchError) as excinfo:
        client.get_json("/thing")

    assert not isinstance(excinfo.value, FetchTimeoutError)


def test_client_error_is_not_retried():
    client, sleeps = _client([make_response(404, {"error": "not found"})])

    with pytest.raises(HttpError) as excinfo:
        client.get_json("/missing")

    assert excinfo.value.status == 404
    assert excinfo.value.retryable is False
    assert len(client.session.calls) == 1
    assert sleeps == []


def test_rate_limit_status_is_retried():
    client, sleeps = _client([make_response(429, {}), make_response(200, [1, 2])])

    assert client.get_json("/thing") == [1, 2]
    assert sleeps == pytest.approx([0.3])


def test_invalid_json_raises_decode_error_without_retry():
    client, sleeps = _client([make_response(200, text="<html>oops</html>")])

    with pytest.raises(DecodeError):
        client.get_json("/thing")

    assert len(client.session.calls) == 1
    assert sleeps == []


def test_url_building_and_headers():
    client, _ = _client([make_response(200, {}), make_response(200, {})], headers={"x-api-key": "k"})

    client.get_json("/collection/x/nfts", params={"limit": 5}, headers={"x-trace": "1"})
    client.get_json("https://other.example.test/abs")

    first, second = client.session.calls
    assert first["url"] == "https://api.example.test/v1/collection/x/nfts"
    assert first["params"] == {"limit": 5}
    assert first["headers"] == {"accept": "application/json", "x-api-key": "k", "x-trace": "1"}
    assert second["url"] == "https://other.example.test/abs"


def test_cancelled_before_start_makes_no_request():
    client, _ = _client([make_response(200, {})])
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(FetchAborted):
        client.get_json("/thing", cancel=cancel)

    assert client.session.calls == []


def test_response_arriving_after_cancel_is_discarded():
    cancel = threading.Event()
    client, _ = _client([make_response(200, {"late": True})], on_get=lambda _n: cancel.set())

    with pytest.raises(FetchAborted):
        client.get_json("/thing", cancel=cancel)


def test_cancel_during_backoff_aborts_without_further_attempts():
    cancel = threading.Event()
    client = HttpClient(base_url="https://api.example.test", backoff_seconds=5.0)
    client.session = FakeSession(
        [requests.exceptions.ReadTimeout("slow"), make_response(200, {})],
        on_get=lambda _n: cancel.set(),
    )

    with pytest.raises(FetchAborted) as excinfo:
        client.get_json("/thing", cancel=cancel)

    assert not isinstance(excinfo.value, FetchTimeoutError)
    assert len(client.session.calls) == 1


def test_abort_is_not_retryable():
    assert FetchAborted("u", "cancelled").retryable is False
    assert FetchTimeoutError("u", "slow").retryable is True
    assert HttpError("u", 503).retryable is True
    assert HttpError("u", 400).retryable is False


def test_cancel_registry_supersedes_only_same_key():
    registry = CancelRegistry()
    first_a = registry.supersede("0xaaa")
    only_b = registry.supersede("0xbbb")
    second_a = registry.supersede("0xaaa")

    assert first_a.is_set()
    assert not second_a.is_set()
    assert not only_b.is_set()

    registry.release("0xaaa", first_a)
    third_a = registry.supersede("0xaaa")
    assert second_a.is_set()
    assert not third_a.is_set()


def test_invalid_attempt_budget_rejected():
    with pytest.raises(ValueError):
        HttpClient(max_attempts=0)


def test_cancel_aborts_request_that_is_still_waiting_for_the_server():
    cancel = threading.Event()
    server_answers = threading.Event()
    client, _ = _client(
        [make_response(200, {"late": True})],
        on_get=lambda _n: server_answers.wait(2.0),
    )
    threading.Timer(0.1, cancel.set).start()

    started = time.monotonic()
    try:
        with pytest.raises(FetchAborted):
            client.get_json("/thing", cancel=cancel)
        elapsed = time.monotonic() - started
    finally:
        server_answers.set()

    assert elapsed < 1.0
    assert client.session.calls[0]["stream"] is True


def test_cancel_closes_response_whose_body_is_still_streaming():
    cancel = threading.Event()
    body_done = threading.Event()
    resp = make_response(200, {"ok": True})

    def _slow_body():
        body_done.wait(2.0)
        return {"ok": True}

    resp.json.side_effect = _slow_body
    resp.close.side_effect = lambda: body_done.set()
    client, _ = _client([resp])
    threading.Timer(0.1, cancel.set).start()

    with pytest.raises(FetchAborted):
        client.get_json("/thing", cancel=cancel)

    assert resp.close.called


def test_failure_after_cancel_is_reported_as_abort_not_timeout():
    cancel = threading.Event()

    def _cancel_then_time_out(_n):
        cancel.set()
        raise requests.exceptions.ReadTimeout("slow")

    client, sleeps = _client([make_response(200, {})], on_get=_cancel_then_time_out, max_attempts=1)

    with pytest.raises(FetchAborted) as excinfo:
        client.get_json("/thing", cancel=cancel)

    assert not isinstance(excinfo.value, FetchTimeoutError)
    assert sleeps == []


def test_trickling_server_is_cut_off_at_total_deadline():
    server_answers = threading.Event()
    client, _ = _client(
        [make_response(200, {})],
        on_get=lambda _n: server_answers.wait(2.0),
        timeout=0.2,
        max_attempts=1,
    )

    started = time.monotonic()
    try:
        with pytest.raises(FetchTimeoutError):
            client.get_json("/thing")
        elapsed = time.monotonic() - started
    finally:
        server_answers.set()

    assert elapsed < 1.0
