from enum import Enum
from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime

from beacon_ingestor.models.chain import BlockHeader, BlockBody


class SlotStatus(str, Enum):
    PROPOSED = "proposed"
    MISSED = "missed"


class Slot(BaseModel):
    """Model representing one slot of the chain, with or without a block."""

    slot_number: int
    block_root: Optional[str] = None
    parent_root: Optional[str] = None
    state_root: Optional[str] = None
    proposer_index: Optional[int] = None
    status: SlotStatus
    timestamp: datetime
    graffiti: Optional[str] = None

    @classmethod
    def missed(cls, slot_number: int, timestamp: datetime) -> "Slot":
        """A slot with no block header: every hash field stays empty."""
        return cls(slot_number=slot_number, status=SlotStatus.MISSED, timestamp=timestamp)

    @classmethod
    def proposed(cls, slot_number: int, header: BlockHeader, body: Optional[BlockBody],
                 timestamp: datetime) -> "Slot":
        """
        A slot with a block header.

        The row is keyed on the slot that was asked for, not the one the node echoes back.

        The body is fetched separately and may be unavailable; the proposer index and
        graffiti are then left empty while the header hashes are still recorded.
        """
        return cls(
            slot_number=slot_number,
            block_root=header.root,
            parent_root=header.parent_root,
            state_root=header.state_root,
            proposer_index=body.proposer_index if body else None,
            status=SlotStatus.PROPOSED,
            timestamp=timestamp,
            graffiti=body.graffiti if body else None
        )

    def to_db_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database insertion."""
        result = self.model_dump()
        result["status"] = self.status.value
        return result
