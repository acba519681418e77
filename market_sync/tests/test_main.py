from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import patch

from market_sync import main as cli
from market_sync.config import AppSettings
from market_sync.models import ListingState
from market_sync.runtime import ReadServices
from market_sync.tests.fakes import SELLER, FakeLedger, FakeMetadata, SleepRecorder, event


def _fake_services(ledger: FakeLedger):
    @asynccontextmanager
    async def _open(settings: AppSettings):
        yield ReadServices(settings=settings, reader=ledger, metadata=FakeMetadata(), sleep=SleepRecorder())

    return _open


class TestParseArgs:
    def test_defaults(self) -> None:
        args = cli.parse_args([])
        assert not args.serve
        assert args.more == 0
        assert args.owner is None

    def test_flags(self) -> None:
        args = cli.parse_args(["--more", "2", "--owner", "0xabc", "--no-scan"])
        assert args.more == 2
        assert args.owner == "0xabc"
        assert args.no_scan


class TestSync:
    def test_prints_listings_as_json_lines(self, capsys) -> None:
        ledger = FakeLedger(
            head=100,
            events=[event("1", 100), event("2", 60)],
            states={"1": ListingState(1, SELLER), "2": ListingState(2, SELLER)},
        )
        with patch.object(cli, "open_read_services", _fake_services(ledger)):
            asyncio.run(cli._sync(AppSettings(), cli.parse_args(["--more", "1", "--target", "1"])))
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert [line["tokenId"] for line in lines] == ["1", "2"]

    def test_owner_inventory(self, capsys) -> None:
        ledger = FakeLedger(owners={SELLER: ["4"]}, proceeds={SELLER: 7})
        with patch.object(cli, "open_read_services", _fake_services(ledger)):
            asyncio.run(cli._sync(AppSettings(), cli.parse_args(["--owner", SELLER])))
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert lines[0]["tokenId"] == "4"
        assert lines[-1] == {"owner": SELLER, "proceedsWei": "7"}
