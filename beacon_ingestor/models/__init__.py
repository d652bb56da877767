from beacon_ingestor.models.attestation import Attestation
from beacon_ingestor.models.chain import (
    FAR_FUTURE_EPOCH,
    NotFound,
    HeadInfo,
    BlockHeader,
    BlockBody,
    FinalityCheckpoints
)
from beacon_ingestor.models.slot import Slot, SlotStatus
from beacon_ingestor.models.validator import Validator, ACTIVE_STATUSES
from beacon_ingestor.models.epoch import Epoch, ValidatorAggregates
