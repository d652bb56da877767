from datetime import datetime

import pytest
from sqlalchemy import event, func, select

from conftest import validator_payload
from beacon_ingestor.models import (
    Attestation,
    BlockHeader,
    Epoch,
    FinalityCheckpoints,
    Slot,
    SlotStatus,
    Validator,
    ValidatorAggregates,
)
from beacon_ingestor.services import schema
from beacon_ingestor.services.database import SQLStore


def make_validator(index, **overrides):
    payload = validator_payload(index, **overrides)
    return Validator.from_api_response(payload)


def make_attestation(slot=10, committee=0, validator=1):
    return Attestation(slot_number=slot, committee_index=committee, validator_index=validator,
                       beacon_block_root="0x" + "ab" * 32, source_epoch=0, target_epoch=0,
                       signature="0x" + "cd" * 96, included_in_block=slot + 1)


def make_epoch(number, total_balance=64):
    finality = FinalityCheckpoints(finalized_epoch=number - 2, justified_epoch=number - 1)
    aggregates = ValidatorAggregates(total_validators=2, active_validators=2, total_balance=total_balance)
    return Epoch.summarize(number, finality, aggregates, datetime(2025, 1, 1))


def raw_count(store, table_name):
    """Row count ignoring expiry."""
    with store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(schema.TABLES[table_name])).scalar_one()


def raw_row(store, table_name, **key):
    table = schema.TABLES[table_name]
    query = select(table)
    for column, value in key.items():
        query = query.where(table.c[column] == value)
    with store.engine.connect() as conn:
        return conn.execute(query).mappings().one()


def test_validator_upsert_keeps_one_row_with_latest_values(store, clock):
    store.upsert_validator(make_validator(5, balance=32_000_000_000))
    first = raw_row(store, "validators", validator_index=5)

    clock.advance(days=1)
    store.upsert_validator(make_validator(5, balance=32_000_000_123))
    second = raw_row(store, "validators", validator_index=5)

    assert raw_count(store, "validators") == 1
    assert second["balance"] == 32_000_000_123
    assert second["expires_at"] > first["expires_at"]
    assert second["expires_at"] == datetime(2025, 7, 16, 12, 0, 0)
    assert second["created_at"] == first["created_at"]


def test_validator_without_exit_is_stored_with_null_exit_epoch(store):
    store.upsert_validator(make_validator(9))

    assert raw_row(store, "validators", validator_index=9)["exit_epoch"] is None
    assert store.get_validator(9).exit_epoch is None


def test_slot_missed_then_proposed_is_overwritten(store):
    store.upsert_slot(Slot.missed(40, datetime(2025, 1, 1)))
    header = BlockHeader(slot=40, root="0xr", parent_root="0xp", state_root="0xs", proposer_index=1)
    store.upsert_slot(Slot.proposed(40, header, None, datetime(2025, 1, 1)))

    slot = store.get_slot(40)
    assert raw_count(store, "slots") == 1
    assert slot.status is SlotStatus.PROPOSED
    assert slot.block_root == "0xr"


def test_attestation_insert_is_idempotent(store):
    assert store.insert_attestation(make_attestation()) is True
    assert store.insert_attestation(make_attestation()) is False
    assert store.insert_attestation(make_attestation(validator=2)) is True

    assert store.count("attestations") == 2
    assert [a.validator_index for a in store.list_attestations(10)] == [1, 2]


def test_reads_hide_expired_rows(store, clock):
    store.upsert_slot(Slot.missed(1, datetime(2025, 1, 1)))
    store.upsert_validator(make_validator(1))

    clock.advance(days=200)

    assert store.get_slot(1) is None
    assert store.get_validator(1) is None
    assert store.count("slots") == 0
    assert raw_count(store, "slots") == 1


def test_cleanup_removes_expired_rows_from_every_table(store, clock):
    store.upsert_slot(Slot.missed(1, datetime(2025, 1, 1)))
    store.upsert_validator(make_validator(1))
    store.upsert_epoch(make_epoch(3))
    store.insert_attestation(make_attestation())

    clock.advance(days=100)
    store.upsert_slot(Slot.missed(2, datetime(2025, 1, 1)))
    store.upsert_validator(make_validator(2))

    # First batch expires on 2025-07-15 12:00, the second in late October
    clock.now = datetime(2025, 7, 15, 12, 0, 0)
    removed = store.cleanup_expired()

    assert removed == 4
    assert raw_count(store, "slots") == 1
    assert raw_count(store, "validators") == 1
    assert raw_count(store, "epochs") == 0
    assert raw_count(store, "attestations") == 0
    assert store.get_slot(2) is not None
    assert store.cleanup_expired() == 0


def test_cleanup_rolls_back_when_a_table_fails(store, clock):
    store.upsert_slot(Slot.missed(1, datetime(2025, 1, 1)))
    store.upsert_validator(make_validator(1))
    store.upsert_epoch(make_epoch(3))
    clock.advance(days=365)

    def fail_on_epochs(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("DELETE FROM epochs"):
            raise RuntimeError("disk full")

    event.listen(store.engine, "before_cursor_execute", fail_on_epochs)
    try:
        with pytest.raises(RuntimeError):
            store.cleanup_expired()
    finally:
        event.remove(store.engine, "before_cursor_execute", fail_on_epochs)

    assert raw_count(store, "slots") == 1
    assert raw_count(store, "validators") == 1
    assert raw_count(store, "epochs") == 1


def test_validator_aggregates(store):
    store.upsert_validator(make_validator(0, balance=32_000_000_000))
    store.upsert_validator(make_validator(1, balance=31_000_000_000))
    store.upsert_validator(make_validator(2, balance=0, status="exited_unslashed"))

    aggregates = store.validator_aggregates()

    assert aggregates.total_validators == 3
    assert aggregates.active_validators == 2
    assert aggregates.total_balance == 63_000_000_000
    assert aggregates.avg_effectiveness is None


def test_validator_aggregates_on_empty_store(store):
    assert store.validator_aggregates() == ValidatorAggregates()


def test_listing_and_lookup(store):
    for number in range(5):
        store.upsert_slot(Slot.missed(number, datetime(2025, 1, 1)))
    for index in range(3):
        store.upsert_validator(make_validator(index))
    store.upsert_epoch(make_epoch(3))
    store.upsert_epoch(make_epoch(4))

    assert [s.slot_number for s in store.list_slots(limit=2)] == [4, 3]
    assert [s.slot_number for s in store.list_slots(limit=2, offset=2)] == [2, 1]
    assert [v.validator_index for v in store.list_validators()] == [0, 1, 2]
    assert store.find_validator_by_pubkey("0x" + "0" * 95 + "2").validator_index == 2
    assert store.find_validator_by_pubkey("0xdead") is None
    assert store.get_epoch(3).start_slot == 96
    assert [e.epoch_number for e in store.list_epochs()] == [4, 3]


def test_get_stats(store):
    store.upsert_slot(Slot.missed(7, datetime(2025, 1, 1)))
    store.upsert_epoch(make_epoch(0, total_balance=0))

    stats = store.get_stats()

    assert stats["total_slots"] == 1
    assert stats["total_validators"] == 0
    assert stats["latest_slot"] == 7
    assert stats["latest_epoch"] == 0


def test_count_rejects_unknown_table(store):
    with pytest.raises(ValueError):
        store.count("blocks")


def test_safe_url_masks_credentials():
    store = SQLStore(url="mysql+pymysql://user:pw@localhost/db")
    assert store._safe_url() == "mysql+pymysql://***@localhost/db"
