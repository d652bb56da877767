import calendar
from datetime import datetime, timezone
from typing import Optional

def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form every store column uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def add_months(moment: datetime, months: int) -> datetime:
    """
    Shift a datetime by whole calendar months.

    The day is clamped to the last day of the target month, so 31 August + 6 months
    lands on 28/29 February.
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)

def expiry_from(moment: datetime, retention_months: int) -> datetime:
    """TTL anchor for a row written at `moment`."""
    return add_months(moment, retention_months)

def calculate_slot_timestamp(genesis_time: int, slot: int, seconds_per_slot: int) -> datetime:
    """Calculate UTC timestamp (naive) for a given slot."""
    timestamp = genesis_time + (slot * seconds_per_slot)
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)

def slot_timestamp_or_now(slot: int, genesis_time: Optional[int],
                          seconds_per_slot: Optional[int]) -> datetime:
    """Slot time when the chain timing is known, wall clock otherwise."""
    if genesis_time is None or not seconds_per_slot:
        return utc_now()
    return calculate_slot_timestamp(genesis_time, slot, seconds_per_slot)
