import clickhouse_connect
from clickhouse_connect.driver.client import Client
from datetime import datetime
from typing import Callable, List, Dict, Any, Optional

from beacon_ingestor.config import config
from beacon_ingestor.models import (
    Slot,
    Validator,
    Epoch,
    Attestation,
    ValidatorAggregates,
    ACTIVE_STATUSES
)
from beacon_ingestor.services.storage import Store, ENTITY_TABLES
from beacon_ingestor.utils.logger import logger
from beacon_ingestor.utils.time_utils import utc_now

def connect_clickhouse(
    host: str,
    port: int,
    user: str,
    password: str,
    database: str,
    secure: bool = False,
    verify: bool = False
) -> Client:
    """
    Connect to ClickHouse using clickhouse_connect and return a Client.
    Raises an exception if connection fails.
    """
    logger.info("Connecting to ClickHouse",
               host=host,
               port=port,
               secure=secure,
               verify=verify)
    try:
        client = clickhouse_connect.get_client(
            host=host,
            port=port,
            username=user,
            password=password,
            database=database,
            secure=secure,
            verify=verify,
            send_receive_timeout=300,
            connect_timeout=30
        )
        # Quick test
        client.command("SELECT 1")
        logger.info("ClickHouse connection established successfully")
        return client
    except Exception as e:
        logger.error("Error connecting to ClickHouse", error=str(e))
        raise

# ReplacingMergeTree keeps the row with the greatest updated_at per sorting key, which
# turns plain inserts into last-write-wins upserts once reads use FINAL. The TTL clause
# lets the server drop expired rows in the background between explicit cleanups.
TABLE_DDL = {
    "slots": """
    CREATE TABLE IF NOT EXISTS slots (
        slot_number UInt64,
        block_root Nullable(String),
        parent_root Nullable(String),
        state_root Nullable(String),
        proposer_index Nullable(UInt64),
        status LowCardinality(String),
        timestamp DateTime,
        graffiti Nullable(String),
        updated_at DateTime64(6),
        expires_at DateTime
    ) ENGINE = ReplacingMergeTree(updated_at)
    ORDER BY slot_number
    TTL expires_at DELETE
    """,
    "validators": """
    CREATE TABLE IF NOT EXISTS validators (
        validator_index UInt64,
        pubkey String,
        withdrawal_credentials String,
        balance UInt64,
        effective_balance UInt64,
        status LowCardinality(String),
        activation_epoch Nullable(UInt64),
        exit_epoch Nullable(UInt64),
        last_attestation_slot Nullable(UInt64),
        effectiveness_rating Nullable(Float64),
        updated_at DateTime64(6),
        expires_at DateTime
    ) ENGINE = ReplacingMergeTree(updated_at)
    ORDER BY validator_index
    TTL expires_at DELETE
    """,
    "epochs": """
    CREATE TABLE IF NOT EXISTS epochs (
        epoch_number UInt64,
        start_slot UInt64,
        end_slot UInt64,
        finalized UInt8,
        justified UInt8,
        total_validators UInt64,
        active_validators UInt64,
        total_balance UInt64,
        avg_effectiveness Nullable(Float64),
        timestamp DateTime,
        updated_at DateTime64(6),
        expires_at DateTime
    ) ENGINE = ReplacingMergeTree(updated_at)
    ORDER BY epoch_number
    TTL expires_at DELETE
    """,
    "attestations": """
    CREATE TABLE IF NOT EXISTS attestations (
        slot_number UInt64,
        committee_index UInt64,
        validator_index UInt64,
        beacon_block_root String,
        source_epoch UInt64,
        target_epoch UInt64,
        signature String,
        included_in_block UInt64,
        updated_at DateTime64(6),
        expires_at DateTime
    ) ENGINE = ReplacingMergeTree(updated_at)
    ORDER BY (slot_number, committee_index, validator_index)
    TTL expires_at DELETE
    """,
}

def norm(v):
    """Normalize a Python value for clickhouse_connect row inserts."""
    if isinstance(v, datetime):
        return v.replace(tzinfo=None)
    if isinstance(v, bool):
        return 1 if v else 0
    return v

class ClickHouseStore(Store):
    """ClickHouse storage backend."""

    def __init__(self, client: Optional[Client] = None, clock: Callable[[], datetime] = utc_now,
                 retention_months: Optional[int] = None):
        super().__init__(clock=clock, retention_months=retention_months)
        self.client = client

    def connect(self) -> None:
        if self.client is None:
            self.client = connect_clickhouse(
                host=config.CLICKHOUSE_HOST,
                port=config.CLICKHOUSE_PORT,
                user=config.CLICKHOUSE_USER,
                password=config.CLICKHOUSE_PASSWORD,
                database=config.CLICKHOUSE_DATABASE,
                secure=config.CLICKHOUSE_SECURE,
                verify=False
            )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
            logger.info("ClickHouse connection closed")

    def create_schema(self) -> None:
        self.connect()
        for table, ddl in TABLE_DDL.items():
            self.client.command(ddl)
        logger.info("ClickHouse schema ready", tables=list(TABLE_DDL))

    def _insert_row(self, table: str, row: Dict[str, Any]) -> None:
        """Insert a single row stamped with fresh bookkeeping columns."""
        self.connect()
        values = {**row, **self.write_stamps()}
        cols = list(values.keys())
        self.client.insert(
            table,
            [[norm(values[c]) for c in cols]],
            column_names=cols
        )

    def upsert_slot(self, slot: Slot) -> None:
        self._insert_row("slots", slot.to_db_dict())

    def upsert_validator(self, validator: Validator) -> None:
        self._insert_row("validators", validator.to_db_dict())

    def upsert_epoch(self, epoch: Epoch) -> None:
        self._insert_row("epochs", epoch.to_db_dict())

    def insert_attestation(self, attestation: Attestation) -> bool:
        self.connect()
        existing = self.client.command(
            """
            SELECT count() FROM attestations
            WHERE slot_number = {slot_number:UInt64}
              AND committee_index = {committee_index:UInt64}
              AND validator_index = {validator_index:UInt64}
            """,
            parameters={
                "slot_number": attestation.slot_number,
                "committee_index": attestation.committee_index,
                "validator_index": attestation.validator_index
            }
        )
        if int(existing) > 0:
            return False

        self._insert_row("attestations", attestation.to_db_dict())
        return True

    def cleanup_expired(self) -> int:
        """
        Delete expired rows table by table.

        ClickHouse has no multi-table transactions: each table's delete is atomic on its
        own, and a reader can briefly see one table swept before the next. The count is
        taken over FINAL so it reports logical rows; the DELETE also drops superseded
        versions of live rows, which are not counted.
        """
        self.connect()
        now = self.clock()
        removed = 0

        for table in ENTITY_TABLES:
            expired = int(self.client.command(
                f"SELECT count() FROM {table} FINAL WHERE expires_at <= {{now:DateTime}}",
                parameters={"now": now}
            ))
            if expired:
                self.client.command(
                    f"DELETE FROM {table} WHERE expires_at <= {{now:DateTime}}",
                    parameters={"now": now}
                )
                removed += expired

        return removed

    def validator_aggregates(self) -> ValidatorAggregates:
        rows = self._query(
            """
            SELECT
                count() AS total_validators,
                countIf(status IN {active:Array(String)}) AS active_validators,
                sum(balance) AS total_balance,
                avgOrNull(effectiveness_rating) AS avg_effectiveness
            FROM validators FINAL
            WHERE expires_at > {now:DateTime}
            """,
            {"active": list(ACTIVE_STATUSES)}
        )
        if not rows:
            return ValidatorAggregates()
        return ValidatorAggregates(**rows[0])

    # Read side

    def _query(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        self.connect()
        parameters = {"now": self.clock(), **(params or {})}
        result = self.client.query(query, parameters=parameters)
        return list(result.named_results())

    def _live_rows(self, table: str, where: str = "", order_by: str = "",
                   limit: Optional[int] = None, offset: int = 0,
                   params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        query = f"SELECT * FROM {table} FINAL WHERE expires_at > {{now:DateTime}}"
        if where:
            query += f" AND {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit is not None:
            query += f" LIMIT {int(limit)} OFFSET {int(offset)}"
        return self._query(query, params)

    def get_slot(self, slot_number: int) -> Optional[Slot]:
        rows = self._live_rows("slots", "slot_number = {slot:UInt64}", params={"slot": slot_number})
        return Slot(**rows[0]) if rows else None

    def list_slots(self, limit: int = 100, offset: int = 0) -> List[Slot]:
        rows = self._live_rows("slots", order_by="slot_number DESC", limit=limit, offset=offset)
        return [Slot(**row) for row in rows]

    def get_validator(self, validator_index: int) -> Optional[Validator]:
        rows = self._live_rows("validators", "validator_index = {index:UInt64}",
                               params={"index": validator_index})
        return Validator(**rows[0]) if rows else None

    def list_validators(self, limit: int = 100, offset: int = 0) -> List[Validator]:
        rows = self._live_rows("validators", order_by="validator_index", limit=limit, offset=offset)
        return [Validator(**row) for row in rows]

    def find_validator_by_pubkey(self, pubkey_prefix: str) -> Optional[Validator]:
        rows = self._live_rows("validators", "startsWith(lower(pubkey), {prefix:String})",
                               order_by="validator_index", limit=1,
                               params={"prefix": pubkey_prefix.lower()})
        return Validator(**rows[0]) if rows else None

    def get_epoch(self, epoch_number: int) -> Optional[Epoch]:
        rows = self._live_rows("epochs", "epoch_number = {epoch:UInt64}", params={"epoch": epoch_number})
        return Epoch(**rows[0]) if rows else None

    def list_epochs(self, limit: int = 100, offset: int = 0) -> List[Epoch]:
        rows = self._live_rows("epochs", order_by="epoch_number DESC", limit=limit, offset=offset)
        return [Epoch(**row) for row in rows]

    def list_attestations(self, slot_number: int, limit: int = 100) -> List[Attestation]:
        rows = self._live_rows("attestations", "slot_number = {slot:UInt64}",
                               order_by="committee_index, validator_index", limit=limit,
                               params={"slot": slot_number})
        return [Attestation(**row) for row in rows]

    def count(self, table: str) -> int:
        rows = self._query(
            f"SELECT count() AS count FROM {self.check_table(table)} FINAL WHERE expires_at > {{now:DateTime}}"
        )
        return int(rows[0]["count"]) if rows else 0
