from beacon_ingestor.services.beacon_api import BeaconAPI, BeaconAPIError, ValidatorRange
from beacon_ingestor.services.storage import Store
from beacon_ingestor.services.storage_factory import create_storage
from beacon_ingestor.services.sync_engine import SyncEngine, EngineState, CycleReport
