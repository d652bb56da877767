from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Union

from beacon_ingestor.models.attestation import Attestation

# The beacon API's "never" epoch (2**64 - 1), used for unscheduled exits/activations
FAR_FUTURE_EPOCH = 2**64 - 1

def parse_uint(value: Any) -> int:
    """Parse a decimal string from the wire into an int."""
    if isinstance(value, bool):
        raise ValueError(f"Expected a numeric string, got {value!r}")
    return int(value)

def parse_epoch(value: Any) -> Optional[int]:
    """Parse an epoch, mapping the far-future sentinel to None."""
    epoch = parse_uint(value)
    if epoch >= FAR_FUTURE_EPOCH:
        return None
    return epoch

def decode_graffiti(raw: Optional[str]) -> Optional[str]:
    """Decode the 32-byte hex graffiti field into text, None when empty."""
    if not raw:
        return None
    hex_part = raw[2:] if raw.startswith("0x") else raw
    try:
        data = bytes.fromhex(hex_part)
    except ValueError:
        return None
    text = data.replace(b"\x00", b"").decode("utf-8", errors="replace")
    return text or None


class NotFound(BaseModel):
    """Negative lookup result: the node has nothing for this identifier (HTTP 404)."""

    resource: str
    identifier: str


class HeadInfo(BaseModel):
    """Current head of the chain as reported by the node."""

    slot: int
    block_root: str
    slots_per_epoch: int = 32

    @property
    def epoch(self) -> int:
        return self.slot // self.slots_per_epoch

    @classmethod
    def from_api_response(cls, response: Dict[str, Any], slots_per_epoch: int = 32) -> "HeadInfo":
        data = response["data"]
        return cls(
            slot=parse_uint(data["header"]["message"]["slot"]),
            block_root=data["root"],
            slots_per_epoch=slots_per_epoch
        )


class BlockHeader(BaseModel):
    """Signed block header for one slot."""

    slot: int
    root: str
    parent_root: str
    state_root: str
    proposer_index: int
    canonical: bool = True

    @classmethod
    def from_api_response(cls, response: Dict[str, Any]) -> "BlockHeader":
        data = response["data"]
        message = data["header"]["message"]
        return cls(
            slot=parse_uint(message["slot"]),
            root=data["root"],
            parent_root=message["parent_root"],
            state_root=message["state_root"],
            proposer_index=parse_uint(message["proposer_index"]),
            canonical=bool(data.get("canonical", True))
        )


class BlockBody(BaseModel):
    """The parts of a block body the ingestor keeps."""

    slot: int
    proposer_index: Optional[int] = None
    graffiti: Optional[str] = None
    # Aggregated attestations are not decoded into per-validator rows
    attestations: List[Attestation] = Field(default_factory=list)

    @classmethod
    def from_api_response(cls, response: Dict[str, Any]) -> "BlockBody":
        message = response["data"]["message"]
        body = message.get("body", {})
        proposer_index = message.get("proposer_index")
        return cls(
            slot=parse_uint(message["slot"]),
            proposer_index=parse_uint(proposer_index) if proposer_index is not None else None,
            graffiti=decode_graffiti(body.get("graffiti")),
            attestations=[]
        )


class FinalityCheckpoints(BaseModel):
    """Finalized and justified epochs of a state."""

    finalized_epoch: int
    justified_epoch: int
    previous_justified_epoch: Optional[int] = None

    @classmethod
    def from_api_response(cls, response: Dict[str, Any]) -> "FinalityCheckpoints":
        data = response["data"]
        previous = data.get("previous_justified")
        return cls(
            finalized_epoch=parse_uint(data["finalized"]["epoch"]),
            justified_epoch=parse_uint(data["current_justified"]["epoch"]),
            previous_justified_epoch=parse_uint(previous["epoch"]) if previous else None
        )


HeaderLookup = Union[BlockHeader, NotFound]
BlockLookup = Union[BlockBody, NotFound]
