"""End-to-end pipeline runs with fake API clients."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

import pytest

from _fakes import write_json
from packages.relics.errors import FatalInputError, HttpError, PermanentItemError
from packages.relics.metadata import TokenMetadata
from packages.relics.pipeline import (
    PipelineRun,
    PipelineState,
    build_holders,
    build_points,
    build_relic_holders,
    crawl_relic_holders,
)
from packages.relics.snapshot_io import lock_path_for


class _FakePhosphor:
    def __init__(self, metadata: dict, failures: dict | None = None) -> None:
        self.metadata = metadata
        self.failures = failures or {}
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch_token(self, token_id, cancel=None):
        with self._lock:
            self.calls.append(token_id)
        if token_id in self.failures:
            raise self.failures[token_id]
        return self.metadata[token_id]


class _FakePoints:
    def __init__(self, totals: dict, failing: set) -> None:
        self.totals = totals
        self.failing = failing

    def fetch_total(self, address, cancel=None):
        if address in self.failing:
            raise HttpError(f"https://portal.test/{address}", 503)
        return self.totals[address]


def test_two_pass_end_to_end(tmp_path: Path):
    holders_path = write_json(tmp_path / "holders.json", {"0xABC": ["1", "2", "3"]})
    output = tmp_path / "relic-holders.json"
    client = _FakePhosphor(
        {
            "1": TokenMetadata("common", False),
            "2": TokenMetadata("common", True),
            "3": TokenMetadata("rare", False),
        }
    )

    run, snapshot = build_relic_holders(holders_path, output, client, concurrency=2)

    expected = {"0xabc": {"common": {"genesis": 1, "normal": 1}, "rare": {"normal": 1}}}
    assert snapshot == expected
    assert json.loads(output.read_text(encoding="utf-8")) == expected
    assert run.state is PipelineState.DONE
    assert run.history == [
        PipelineState.INIT,
        PipelineState.LISTING,
        PipelineState.RESOLVING,
        PipelineState.AGGREGATING,
        PipelineState.WRITING,
        PipelineState.DONE,
    ]
    assert not lock_path_for(output).exists()


def test_shared_token_fetched_once(tmp_path: Path, caplog):
    holders_path = write_json(
        tmp_path / "holders.json",
        {"0xaaa": ["7", "8"], "0xbbb": ["7"], "0xAAA": ["8"]},
    )
    client = _FakePhosphor({"7": TokenMetadata("epic"), "8": TokenMetadata("rare")})

    with caplog.at_level(logging.INFO, logger="packages.relics.pipeline"):
        _run, snapshot = build_relic_holders(holders_path, tmp_path / "out.json", client, concurrency=4)

    assert sorted(client.calls) == ["7", "8"]
    assert snapshot == {
        "0xaaa": {"epic": {"normal": 1}, "rare": {"normal": 1}},
        "0xbbb": {"epic": {"normal": 1}},
    }
    assert "Aggregated 3 relics across 2 wallets" in caplog.text


def test_permanently_failing_token_drops_wallet_but_run_succeeds(tmp_path: Path):
    holders_path = write_json(tmp_path / "holders.json", {"0xgood": ["1"], "0xbad": ["2"]})
    client = _FakePhosphor(
        {"1": TokenMetadata("mystic", True)},
        failures={"2": HttpError("https://phosphor.test/2", 500)},
    )

    run, snapshot = build_relic_holders(holders_path, tmp_path / "out.json", client)

    assert snapshot == {"0xgood": {"mystic": {"genesis": 1}}}
    assert run.ok
    resolving = run.phases["resolving"]
    assert (resolving.succeeded, resolving.failed) == (1, 1)
    assert resolving.failures[0].key == "2"
    assert resolving.failures[0].error_type == "HttpError"
    assert "resolving: ok=1, failed=1" in run.summary_lines()


def test_unresolved_rarity_is_an_item_failure(tmp_path: Path):
    holders_path = write_json(tmp_path / "holders.json", {"0xaaa": ["1", "2"]})
    client = _FakePhosphor(
        {"1": TokenMetadata("rare")},
        failures={"2": PermanentItemError("2", "missing rarity")},
    )

    run, snapshot = build_relic_holders(holders_path, tmp_path / "out.json", client)

    assert snapshot == {"0xaaa": {"rare": {"normal": 1}}}
    assert [f.error_type for f in run.failures] == ["PermanentItemError"]


def test_unexpected_worker_error_is_recorded_not_raised(tmp_path: Path):
    holders_path = write_json(tmp_path / "holders.json", {"0xaaa": ["1", "2"]})
    client = _FakePhosphor({"1": TokenMetadata("rare")}, failures={"2": KeyError("shape")})

    run, snapshot = build_relic_holders(holders_path, tmp_path / "out.json", client)

    assert snapshot == {"0xaaa": {"rare": {"normal": 1}}}
    assert run.phases["resolving"].failed == 1


def test_metadata_index_can_be_written(tmp_path: Path):
    holders_path = write_json(tmp_path / "holders.json", {"0xaaa": ["10", "9"]})
    client = _FakePhosphor({"9": TokenMetadata("rare"), "10": TokenMetadata("epic", True)})
    metadata_path = tmp_path / "token-metadata.json"

    build_relic_holders(
        holders_path, tmp_path / "out.json", client, metadata_output_path=metadata_path
    )

    assert json.loads(metadata_path.read_text(encoding="utf-8")) == {
        "10": {"genesis": True, "rarity": "epic"},
        "9": {"genesis": False, "rarity": "rare"},
    }


def test_missing_input_fails_run(tmp_path: Path):
    output = tmp_path / "out.json"
    client = _FakePhosphor({})

    with pytest.raises(FatalInputError):
        build_relic_holders(tmp_path / "nope.json", output, client)

    assert not output.exists()
    assert not lock_path_for(output).exists()
    assert client.calls == []


def test_corrupt_input_fails_run(tmp_path: Path):
    holders_path = tmp_path / "holders.json"
    holders_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(FatalInputError) as excinfo:
        build_relic_holders(holders_path, tmp_path / "out.json", _FakePhosphor({}))

    assert "failed to parse JSON" in str(excinfo.value)


def test_non_utf8_input_fails_run(tmp_path: Path):
    holders_path = tmp_path / "holders.json"
    holders_path.write_bytes(b'{"0xaaa": ["1"]}\xff')
    output = tmp_path / "out.json"

    with pytest.raises(FatalInputError) as excinfo:
        build_relic_holders(holders_path, output, _FakePhosphor({}))

    assert "not valid UTF-8" in str(excinfo.value)
    assert not output.exists()
    assert not lock_path_for(output).exists()


def test_locked_output_is_rejected(tmp_path: Path):
    holders_path = write_json(tmp_path / "holders.json", {"0xaaa": ["1"]})
    output = tmp_path / "out.json"
    lock_path_for(output).write_text("12345", encoding="utf-8")

    with pytest.raises(FatalInputError):
        build_relic_holders(holders_path, output, _FakePhosphor({"1": TokenMetadata("rare")}))

    assert not output.exists()
    # the other run's lock is left alone
    assert lock_path_for(output).exists()


def test_rerun_overwrites_with_identical_bytes(tmp_path: Path):
    holders_path = write_json(tmp_path / "holders.json", {"0xbbb": ["2"], "0xaaa": ["1", "2"]})
    client = _FakePhosphor({"1": TokenMetadata("rare", True), "2": TokenMetadata("common")})
    output = tmp_path / "out.json"

    build_relic_holders(holders_path, output, client)
    first = output.read_bytes()
    build_relic_holders(holders_path, output, client, concurrency=1)

    assert output.read_bytes() == first


def test_build_holders_from_bulk_export(tmp_path: Path):
    export = {
        "metadata": {"block": 1},
        "holders": [
            {"address": "0xAAA", "token_id": "10", "quantity": 1},
            {"address": "0xaaa", "tokenId": 2, "quantity": 1},
            {"address": "0xaaa", "token_id": "10", "quantity": 1},
            {"address": "0xbbb", "token_id": ""},
            {"token_id": "3"},
        ],
    }
    input_path = write_json(tmp_path / "snapshot.json", export)
    output = tmp_path / "holders.json"

    run, holders = build_holders(input_path, output)

    assert holders == {"0xaaa": ["2", "10"]}
    assert json.loads(output.read_text(encoding="utf-8")) == {"0xaaa": ["2", "10"]}
    assert run.phases["listing"].skipped == 2
    assert PipelineState.RESOLVING not in run.history


def test_build_points_defaults_failures_to_zero(tmp_path: Path):
    holders_path = write_json(
        tmp_path / "relic-holders.json",
        {"0xAAA": {"rare": {"normal": 1}}, "0xbbb": {"epic": {"genesis": 1}}},
    )
    client = _FakePoints({"0xaaa": 120.5}, failing={"0xbbb"})
    output = tmp_path / "iq-snapshot.json"

    run, snapshot = build_points(holders_path, output, client, concurrency=2)

    assert snapshot == {"0xaaa": 120.5, "0xbbb": 0}
    assert json.loads(output.read_text(encoding="utf-8")) == snapshot
    assert run.ok
    assert run.phases["resolving"].failed == 1


class _FakeCrawler:
    collection_slug = "relics"

    def __init__(self, result=None, error=None) -> None:
        self.result = result
        self.error = error

    def crawl(self):
        if self.error is not None:
            raise self.error
        return self.result


def test_crawl_failure_moves_run_to_failed(tmp_path: Path):
    from packages.relics.errors import CrawlError

    output = tmp_path / "out.json"
    with pytest.raises(CrawlError):
        crawl_relic_holders(output, _FakeCrawler(error=CrawlError("page 3 failed")))

    assert not output.exists()
    assert not lock_path_for(output).exists()


def test_crawl_pipeline_aggregates_assets(tmp_path: Path):
    from packages.relics.aggregation import HolderAsset
    from packages.relics.opensea import CrawlResult

    result = CrawlResult(
        assets=[HolderAsset("0xaaa", "1", "rare", True), HolderAsset("0xaaa", "2", "rare")],
        pages_fetched=1,
        items_seen=3,
    )
    result.skip_reasons["missing_owner"] += 1

    run, snapshot = crawl_relic_holders(tmp_path / "out.json", _FakeCrawler(result=result))

    assert snapshot == {"0xaaa": {"rare": {"genesis": 1, "normal": 1}}}
    assert run.phases["listing"].skipped == 1
    assert run.history[-1] is PipelineState.DONE


def test_illegal_transition_rejected():
    run = PipelineRun("test")
    with pytest.raises(ValueError):
        run.advance(PipelineState.WRITING)
    run.advance(PipelineState.LISTING)
    run.fail(RuntimeError("boom"))
    assert run.state is PipelineState.FAILED
    with pytest.raises(ValueError):
        run.advance(PipelineState.DONE)
