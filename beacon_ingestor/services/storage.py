from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional

from beacon_ingestor.config import config
from beacon_ingestor.models import Slot, Validator, Epoch, Attestation, ValidatorAggregates
from beacon_ingestor.utils.time_utils import utc_now, expiry_from

ENTITY_TABLES = ("attestations", "slots", "validators", "epochs")

class Store(ABC):
    """
    Base class for storage backends.

    Every write is keyed by the entity's natural key and stamps the row with a fresh
    `expires_at`; every read only sees rows whose `expires_at` lies in the future.
    Writes run independently of each other, so one failed write never undoes another.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now,
                 retention_months: Optional[int] = None):
        self.clock = clock
        self.retention_months = retention_months or config.RETENTION_MONTHS

    def write_stamps(self) -> Dict[str, datetime]:
        """Bookkeeping columns for a row written now."""
        now = self.clock()
        return {
            "updated_at": now,
            "expires_at": expiry_from(now, self.retention_months)
        }

    @abstractmethod
    def connect(self) -> None:
        """Open the connection and verify it."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the connection."""
        pass

    @abstractmethod
    def create_schema(self) -> None:
        """Create the entity tables if they do not exist."""
        pass

    @abstractmethod
    def upsert_slot(self, slot: Slot) -> None:
        pass

    @abstractmethod
    def upsert_validator(self, validator: Validator) -> None:
        pass

    @abstractmethod
    def upsert_epoch(self, epoch: Epoch) -> None:
        pass

    @abstractmethod
    def insert_attestation(self, attestation: Attestation) -> bool:
        """Insert unless the (slot, committee, validator) key exists. Returns True if inserted."""
        pass

    @abstractmethod
    def cleanup_expired(self) -> int:
        """Delete every row whose TTL has elapsed and return how many were removed."""
        pass

    @abstractmethod
    def validator_aggregates(self) -> ValidatorAggregates:
        pass

    # Read side

    @abstractmethod
    def get_slot(self, slot_number: int) -> Optional[Slot]:
        pass

    @abstractmethod
    def list_slots(self, limit: int = 100, offset: int = 0) -> List[Slot]:
        pass

    @abstractmethod
    def get_validator(self, validator_index: int) -> Optional[Validator]:
        pass

    @abstractmethod
    def list_validators(self, limit: int = 100, offset: int = 0) -> List[Validator]:
        pass

    @abstractmethod
    def find_validator_by_pubkey(self, pubkey_prefix: str) -> Optional[Validator]:
        pass

    @abstractmethod
    def get_epoch(self, epoch_number: int) -> Optional[Epoch]:
        pass

    @abstractmethod
    def list_epochs(self, limit: int = 100, offset: int = 0) -> List[Epoch]:
        pass

    @abstractmethod
    def list_attestations(self, slot_number: int, limit: int = 100) -> List[Attestation]:
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    def get_stats(self) -> Dict[str, Any]:
        """Row counts and the newest slot/epoch held."""
        slots = self.list_slots(limit=1)
        epochs = self.list_epochs(limit=1)
        stats = {f"total_{table}": self.count(table) for table in ENTITY_TABLES}
        stats["latest_slot"] = slots[0].slot_number if slots else None
        stats["latest_epoch"] = epochs[0].epoch_number if epochs else None
        return stats

    @staticmethod
    def check_table(table: str) -> str:
        if table not in ENTITY_TABLES:
            raise ValueError(f"Unknown table: {table}")
        return table
