from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime

from beacon_ingestor.models.chain import parse_uint, parse_epoch

ACTIVE_STATUSES = ("active_ongoing", "active_exiting", "active_slashed")

class Validator(BaseModel):
    """Model representing a beacon chain validator."""

    validator_index: int
    pubkey: str
    withdrawal_credentials: str
    balance: int
    effective_balance: int
    status: str
    activation_epoch: Optional[int] = None
    exit_epoch: Optional[int] = None
    last_attestation_slot: Optional[int] = None
    effectiveness_rating: Optional[float] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, validator_data: Dict[str, Any]) -> "Validator":
        """Create a Validator from one entry of the validators endpoint."""
        validator = validator_data["validator"]

        return cls(
            validator_index=parse_uint(validator_data["index"]),
            pubkey=validator["pubkey"],
            withdrawal_credentials=validator["withdrawal_credentials"],
            balance=parse_uint(validator_data["balance"]),
            effective_balance=parse_uint(validator["effective_balance"]),
            status=validator_data["status"],
            activation_epoch=parse_epoch(validator["activation_epoch"]),
            exit_epoch=parse_epoch(validator["exit_epoch"]),
            # Not provided by this endpoint
            last_attestation_slot=None,
            effectiveness_rating=None
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_db_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database insertion."""
        return self.model_dump(exclude={"updated_at"})
