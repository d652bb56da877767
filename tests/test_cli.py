import asyncio
from datetime import datetime

import pytest

from beacon_ingestor import cli
from beacon_ingestor.models import Slot
from beacon_ingestor.services.clickhouse import ClickHouseStore
from beacon_ingestor.services.database import SQLStore
from beacon_ingestor.services.storage_factory import create_storage
from beacon_ingestor.utils.logger import simple_console_renderer


def test_create_storage_selects_backend():
    assert isinstance(create_storage("clickhouse"), ClickHouseStore)
    assert isinstance(create_storage("postgres"), SQLStore)
    assert isinstance(create_storage("PostgreSQL"), SQLStore)


def test_create_storage_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_storage("parquet")


def test_parser_reads_run_interval():
    args = cli.create_parser().parse_args(["run", "--poll-interval-ms", "500"])

    assert args.command == "run"
    assert args.poll_interval_ms == 500


def test_init_db_cleanup_and_status_commands(tmp_path, clock, monkeypatch, capsys):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(cli, "create_storage", lambda: SQLStore(url=url, clock=clock))

    asyncio.run(cli.main(["init-db"]))

    seeded = SQLStore(url=url, clock=clock)
    seeded.upsert_slot(Slot.missed(12, datetime(2025, 1, 1)))
    seeded.close()

    asyncio.run(cli.main(["status"]))
    assert "latest slot" in capsys.readouterr().out

    clock.advance(days=365)
    asyncio.run(cli.main(["cleanup"]))

    check = SQLStore(url=url, clock=clock)
    assert check.count("slots") == 0
    check.close()


def test_console_renderer_orders_cycle_fields_first():
    line = simple_console_renderer(None, "info", {
        "timestamp": "2025-01-01 00:00:00", "level": "info", "event": "Ingested",
        "proposed": 9, "head_slot": 100, "cycle": 4,
    })

    assert line == "2025-01-01 00:00:00 [INFO ] Ingested | cycle=4 head_slot=100 proposed=9"
