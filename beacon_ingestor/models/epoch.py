from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime

from beacon_ingestor.models.chain import FinalityCheckpoints


class ValidatorAggregates(BaseModel):
    """Totals over the validator rows currently held by the store."""

    total_validators: int = 0
    active_validators: int = 0
    total_balance: int = 0
    avg_effectiveness: Optional[float] = None


class Epoch(BaseModel):
    """Model representing an epoch summary."""

    epoch_number: int
    start_slot: int
    end_slot: int
    finalized: bool
    justified: bool
    total_validators: int
    active_validators: int
    total_balance: int
    avg_effectiveness: Optional[float] = None
    timestamp: datetime

    @classmethod
    def summarize(cls, epoch_number: int, finality: FinalityCheckpoints,
                  aggregates: ValidatorAggregates, timestamp: datetime,
                  slots_per_epoch: int = 32) -> "Epoch":
        start_slot = epoch_number * slots_per_epoch
        return cls(
            epoch_number=epoch_number,
            start_slot=start_slot,
            end_slot=start_slot + slots_per_epoch - 1,
            finalized=epoch_number <= finality.finalized_epoch,
            justified=epoch_number <= finality.justified_epoch,
            total_validators=aggregates.total_validators,
            active_validators=aggregates.active_validators,
            total_balance=aggregates.total_balance,
            avg_effectiveness=aggregates.avg_effectiveness,
            timestamp=timestamp
        )

    def to_db_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database insertion."""
        return self.model_dump()
