from pydantic import BaseModel
from typing import Dict, Any

class Attestation(BaseModel):
    """One validator's attestation as included in a block."""

    slot_number: int
    committee_index: int
    validator_index: int
    beacon_block_root: str
    source_epoch: int
    target_epoch: int
    signature: str
    included_in_block: int

    @property
    def key(self) -> tuple:
        return (self.slot_number, self.committee_index, self.validator_index)

    def to_db_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database insertion."""
        return self.model_dump()
