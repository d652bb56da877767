from datetime import datetime
from typing import Callable, Dict, Any, List, Optional

from sqlalchemy import create_engine, select, delete, func, case, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from beacon_ingestor.config import config
from beacon_ingestor.models import (
    Slot,
    Validator,
    Epoch,
    Attestation,
    ValidatorAggregates,
    ACTIVE_STATUSES
)
from beacon_ingestor.services import schema
from beacon_ingestor.services.storage import Store, ENTITY_TABLES
from beacon_ingestor.utils.logger import logger
from beacon_ingestor.utils.time_utils import utc_now

# Dialects with INSERT ... ON CONFLICT support
INSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

class SQLStore(Store):
    """Relational store (PostgreSQL in production, SQLite for local runs) via SQLAlchemy Core."""

    POOL_SIZE = 5

    def __init__(self, url: Optional[str] = None, clock: Callable[[], datetime] = utc_now,
                 retention_months: Optional[int] = None):
        super().__init__(clock=clock, retention_months=retention_months)
        self.url = url or config.DATABASE_URL
        self.engine: Optional[Engine] = None

    def connect(self) -> None:
        if self.engine is not None:
            return

        logger.info("Connecting to database", url=self._safe_url())
        engine_options: Dict[str, Any] = {"pool_pre_ping": True}
        if not self.url.startswith("sqlite"):
            engine_options.update(pool_size=self.POOL_SIZE, pool_recycle=3600)

        engine = create_engine(self.url, **engine_options)
        if engine.dialect.name not in INSERT_DIALECTS:
            engine.dispose()
            raise ValueError(f"Unsupported database dialect: {engine.dialect.name}")

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Error connecting to database", error=str(e))
            engine.dispose()
            raise

        self.engine = engine
        logger.info("Database connection established", dialect=engine.dialect.name)

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            logger.info("Database connection closed")

    def create_schema(self) -> None:
        self._require_engine()
        schema.metadata.create_all(self.engine)
        logger.info("Database schema ready", tables=list(schema.TABLES))

    def _require_engine(self) -> Engine:
        if self.engine is None:
            self.connect()
        return self.engine

    def _safe_url(self) -> str:
        # Keep credentials out of the logs
        if "@" in self.url:
            scheme, _, rest = self.url.partition("://")
            return f"{scheme}://***@{rest.split('@', 1)[1]}"
        return self.url

    def _insert(self, table):
        engine = self._require_engine()
        return INSERT_DIALECTS[engine.dialect.name](table)

    def _upsert(self, table_name: str, row: Dict[str, Any]) -> None:
        """Insert a full row, or overwrite every mutable column of the existing one."""
        table = schema.TABLES[table_name]
        key_columns = schema.NATURAL_KEYS[table_name]
        stamps = self.write_stamps()
        values = {**row, **stamps, "created_at": stamps["updated_at"]}

        stmt = self._insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=key_columns,
            set_={
                column: stmt.excluded[column]
                for column in values
                if column not in key_columns and column != "created_at"
            }
        )

        with self.engine.begin() as conn:
            conn.execute(stmt)

    def upsert_slot(self, slot: Slot) -> None:
        self._upsert("slots", slot.to_db_dict())

    def upsert_validator(self, validator: Validator) -> None:
        self._upsert("validators", validator.to_db_dict())

    def upsert_epoch(self, epoch: Epoch) -> None:
        self._upsert("epochs", epoch.to_db_dict())

    def insert_attestation(self, attestation: Attestation) -> bool:
        stamps = self.write_stamps()
        values = {**attestation.to_db_dict(), **stamps, "created_at": stamps["updated_at"]}

        stmt = self._insert(schema.attestations).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=schema.NATURAL_KEYS["attestations"])

        with self.engine.begin() as conn:
            inserted = conn.execute(stmt).rowcount
        return inserted == 1

    def cleanup_expired(self) -> int:
        """Delete expired rows from every entity table in one transaction."""
        self._require_engine()
        now = self.clock()
        removed = 0

        with self.engine.begin() as conn:
            for table_name in ENTITY_TABLES:
                table = schema.TABLES[table_name]
                result = conn.execute(delete(table).where(table.c.expires_at <= now))
                removed += result.rowcount

        return removed

    def validator_aggregates(self) -> ValidatorAggregates:
        self._require_engine()
        validators = schema.validators
        query = (
            select(
                func.count(),
                func.coalesce(func.sum(case((validators.c.status.in_(ACTIVE_STATUSES), 1), else_=0)), 0),
                func.coalesce(func.sum(validators.c.balance), 0),
                func.avg(validators.c.effectiveness_rating)
            )
            .where(validators.c.expires_at > self.clock())
        )

        with self.engine.connect() as conn:
            total, active, balance, avg_effectiveness = conn.execute(query).one()

        return ValidatorAggregates(
            total_validators=int(total),
            active_validators=int(active),
            total_balance=int(balance),
            avg_effectiveness=float(avg_effectiveness) if avg_effectiveness is not None else None
        )

    # Read side

    def _fetch(self, query) -> List[Dict[str, Any]]:
        self._require_engine()
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def _live(self, table):
        return select(table).where(table.c.expires_at > self.clock())

    def get_slot(self, slot_number: int) -> Optional[Slot]:
        rows = self._fetch(self._live(schema.slots).where(schema.slots.c.slot_number == slot_number))
        return Slot(**rows[0]) if rows else None

    def list_slots(self, limit: int = 100, offset: int = 0) -> List[Slot]:
        query = self._live(schema.slots).order_by(schema.slots.c.slot_number.desc()).limit(limit).offset(offset)
        return [Slot(**row) for row in self._fetch(query)]

    def get_validator(self, validator_index: int) -> Optional[Validator]:
        table = schema.validators
        rows = self._fetch(self._live(table).where(table.c.validator_index == validator_index))
        return Validator(**rows[0]) if rows else None

    def list_validators(self, limit: int = 100, offset: int = 0) -> List[Validator]:
        table = schema.validators
        query = self._live(table).order_by(table.c.validator_index).limit(limit).offset(offset)
        return [Validator(**row) for row in self._fetch(query)]

    def find_validator_by_pubkey(self, pubkey_prefix: str) -> Optional[Validator]:
        table = schema.validators
        query = (
            self._live(table)
            .where(table.c.pubkey.ilike(f"{pubkey_prefix}%"))
            .order_by(table.c.validator_index)
            .limit(1)
        )
        rows = self._fetch(query)
        return Validator(**rows[0]) if rows else None

    def get_epoch(self, epoch_number: int) -> Optional[Epoch]:
        table = schema.epochs
        rows = self._fetch(self._live(table).where(table.c.epoch_number == epoch_number))
        return Epoch(**rows[0]) if rows else None

    def list_epochs(self, limit: int = 100, offset: int = 0) -> List[Epoch]:
        table = schema.epochs
        query = self._live(table).order_by(table.c.epoch_number.desc()).limit(limit).offset(offset)
        return [Epoch(**row) for row in self._fetch(query)]

    def list_attestations(self, slot_number: int, limit: int = 100) -> List[Attestation]:
        table = schema.attestations
        query = (
            self._live(table)
            .where(table.c.slot_number == slot_number)
            .order_by(table.c.committee_index, table.c.validator_index)
            .limit(limit)
        )
        return [Attestation(**row) for row in self._fetch(query)]

    def count(self, table: str) -> int:
        target = schema.TABLES[self.check_table(table)]
        query = select(func.count()).select_from(target).where(target.c.expires_at > self.clock())
        self._require_engine()
        with self.engine.connect() as conn:
            return int(conn.execute(query).scalar_one())
