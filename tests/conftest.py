import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

# Ensure repo root is on sys.path so `import beacon_ingestor` works under all pytest import modes.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from beacon_ingestor.models import (  # noqa: E402
    FAR_FUTURE_EPOCH,
    Attestation,
    BlockBody,
    BlockHeader,
    FinalityCheckpoints,
    HeadInfo,
    NotFound,
    Validator,
)
from beacon_ingestor.services.beacon_api import BeaconAPIError, ValidatorRange  # noqa: E402
from beacon_ingestor.services.database import SQLStore  # noqa: E402

GENESIS_TIME = 1606824023
SECONDS_PER_SLOT = 12


class FakeClock:
    """Settable wall clock for stores."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def validator_payload(index: int, balance: int = 32_000_000_000, status: str = "active_ongoing",
                      exit_epoch: int = FAR_FUTURE_EPOCH) -> Dict:
    """One entry of /eth/v1/beacon/states/{state}/validators, numbers as strings."""
    return {
        "index": str(index),
        "balance": str(balance),
        "status": status,
        "validator": {
            "pubkey": "0x" + f"{index:096x}",
            "withdrawal_credentials": "0x01" + "00" * 11 + f"{index:040x}",
            "effective_balance": "32000000000",
            "slashed": False,
            "activation_eligibility_epoch": "0",
            "activation_epoch": "0",
            "exit_epoch": str(exit_epoch),
            "withdrawable_epoch": str(FAR_FUTURE_EPOCH),
        },
    }


class FakeBeaconAPI:
    """In-memory stand-in for the chain client with scriptable failures."""

    def __init__(self, head_slot: int = 100, validator_count: int = 50):
        self.head_slot = head_slot
        self.validator_count = validator_count
        self.missing_headers: Set[int] = set()
        self.missing_bodies: Set[int] = set()
        self.failing_slots: Set[int] = set()
        self.header_slots: Dict[int, int] = {}
        self.attestations: Dict[int, List[Attestation]] = {}
        self.balances: Dict[int, int] = {}
        self.exit_epochs: Dict[int, int] = {}
        self.finalized_epoch = 2
        self.justified_epoch = 3
        self.head_error: Optional[Exception] = None
        self.validators_error: Optional[Exception] = None
        self.finality_error: Optional[Exception] = None
        self.failing_validator_batches: Set[int] = set()
        self.head_delay = 0.0
        self.validator_requests: List[Tuple[int, int]] = []
        self.head_calls = 0
        self.started = False
        self.closed = False

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    async def get_head(self) -> HeadInfo:
        self.head_calls += 1
        if self.head_delay:
            await asyncio.sleep(self.head_delay)
        if self.head_error is not None:
            raise self.head_error
        return HeadInfo(slot=self.head_slot, block_root=f"0x{self.head_slot:064x}")

    async def get_block_header(self, slot: int):
        if slot in self.failing_slots:
            raise BeaconAPIError(f"http://node/eth/v1/beacon/headers/{slot}", "Internal Server Error", 500)
        if slot in self.missing_headers:
            return NotFound(resource="header", identifier=str(slot))
        return BlockHeader(
            slot=self.header_slots.get(slot, slot),
            root=f"0x{slot:064x}",
            parent_root=f"0x{slot - 1:064x}" if slot else "0x" + "00" * 32,
            state_root=f"0x{slot + 10_000:064x}",
            proposer_index=slot % 7,
        )

    async def get_block(self, slot: int):
        if slot in self.missing_bodies:
            return NotFound(resource="block", identifier=str(slot))
        return BlockBody(
            slot=slot,
            proposer_index=slot % 7,
            graffiti=f"block {slot}",
            attestations=list(self.attestations.get(slot, [])),
        )

    async def get_finality_checkpoints(self, state_id: str = "head") -> FinalityCheckpoints:
        if self.finality_error is not None:
            raise self.finality_error
        return FinalityCheckpoints(finalized_epoch=self.finalized_epoch,
                                   justified_epoch=self.justified_epoch)

    async def get_genesis_time(self) -> int:
        return GENESIS_TIME

    async def get_seconds_per_slot(self) -> int:
        return SECONDS_PER_SLOT

    async def get_validators(self, start: int, end: int, state_id: str = "head") -> ValidatorRange:
        self.validator_requests.append((start, end))
        if self.validators_error is not None:
            raise self.validators_error

        result = ValidatorRange(start=start, end=end)
        for index in range(start, end + 1):
            if index in self.failing_validator_batches:
                result.failed.append((index, index))
                continue
            if index >= self.validator_count:
                continue
            payload = validator_payload(
                index,
                balance=self.balances.get(index, 32_000_000_000),
                exit_epoch=self.exit_epochs.get(index, FAR_FUTURE_EPOCH),
            )
            result.validators.append(Validator.from_api_response(payload))
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    sql_store = SQLStore(url=f"sqlite:///{tmp_path / 'beacon.db'}", clock=clock, retention_months=6)
    sql_store.connect()
    sql_store.create_schema()
    yield sql_store
    sql_store.close()


@pytest.fixture
def live_store(tmp_path):
    """Store on the real wall clock, for engine runs."""
    sql_store = SQLStore(url=f"sqlite:///{tmp_path / 'engine.db'}", retention_months=6)
    sql_store.connect()
    sql_store.create_schema()
    yield sql_store
    sql_store.close()


@pytest.fixture
def chain():
    return FakeBeaconAPI()
