from typing import Optional

from beacon_ingestor.config import config
from beacon_ingestor.services.storage import Store
from beacon_ingestor.utils.logger import logger

def create_storage(backend: Optional[str] = None) -> Store:
    """Factory function to create the appropriate storage backend."""
    backend = (backend or config.STORAGE_BACKEND).lower()

    if backend == "clickhouse":
        from beacon_ingestor.services.clickhouse import ClickHouseStore
        logger.info("Using ClickHouse storage backend")
        return ClickHouseStore()
    elif backend in ("postgres", "postgresql", "sql"):
        from beacon_ingestor.services.database import SQLStore
        logger.info("Using relational storage backend")
        return SQLStore()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")
