"""Relational schema for the four entity tables."""
from sqlalchemy import (
    MetaData,
    Table,
    Column,
    BigInteger,
    Integer,
    Boolean,
    DateTime,
    Float,
    String,
    Text,
    PrimaryKeyConstraint
)

metadata = MetaData()

# Hex roots are 0x + 64 chars, pubkeys 0x + 96, signatures 0x + 192

slots = Table(
    "slots", metadata,
    Column("slot_number", BigInteger, primary_key=True, autoincrement=False),
    Column("block_root", String(66)),
    Column("parent_root", String(66)),
    Column("state_root", String(66)),
    Column("proposer_index", BigInteger),
    Column("status", String(16), nullable=False),
    Column("timestamp", DateTime, nullable=False),
    Column("graffiti", Text),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
)

validators = Table(
    "validators", metadata,
    Column("validator_index", BigInteger, primary_key=True, autoincrement=False),
    Column("pubkey", String(98), nullable=False, index=True),
    Column("withdrawal_credentials", String(66), nullable=False),
    Column("balance", BigInteger, nullable=False),
    Column("effective_balance", BigInteger, nullable=False),
    Column("status", String(32), nullable=False, index=True),
    Column("activation_epoch", BigInteger),
    Column("exit_epoch", BigInteger),
    Column("last_attestation_slot", BigInteger),
    Column("effectiveness_rating", Float),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
)

epochs = Table(
    "epochs", metadata,
    Column("epoch_number", BigInteger, primary_key=True, autoincrement=False),
    Column("start_slot", BigInteger, nullable=False),
    Column("end_slot", BigInteger, nullable=False),
    Column("finalized", Boolean, nullable=False),
    Column("justified", Boolean, nullable=False),
    Column("total_validators", BigInteger, nullable=False),
    Column("active_validators", BigInteger, nullable=False),
    Column("total_balance", BigInteger, nullable=False),
    Column("avg_effectiveness", Float),
    Column("timestamp", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
)

attestations = Table(
    "attestations", metadata,
    Column("slot_number", BigInteger, nullable=False),
    Column("committee_index", Integer, nullable=False),
    Column("validator_index", BigInteger, nullable=False),
    Column("beacon_block_root", String(66), nullable=False),
    Column("source_epoch", BigInteger, nullable=False),
    Column("target_epoch", BigInteger, nullable=False),
    Column("signature", String(194), nullable=False),
    Column("included_in_block", BigInteger, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
    PrimaryKeyConstraint("slot_number", "committee_index", "validator_index"),
)

TABLES = {
    "slots": slots,
    "validators": validators,
    "epochs": epochs,
    "attestations": attestations,
}

NATURAL_KEYS = {
    "slots": ["slot_number"],
    "validators": ["validator_index"],
    "epochs": ["epoch_number"],
    "attestations": ["slot_number", "committee_index", "validator_index"],
}
