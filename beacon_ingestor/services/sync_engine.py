import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from beacon_ingestor.config import config
from beacon_ingestor.models import NotFound, Slot, SlotStatus, Epoch
from beacon_ingestor.services.beacon_api import BeaconAPI
from beacon_ingestor.services.storage import Store
from beacon_ingestor.utils.logger import logger
from beacon_ingestor.utils.time_utils import slot_timestamp_or_now, utc_now


class EngineState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class CycleReport:
    """What one cycle did, step by step."""
    cycle: int
    head_slot: Optional[int] = None
    aborted: bool = False
    failed_steps: List[str] = field(default_factory=list)
    slots_proposed: int = 0
    slots_missed: int = 0
    slots_failed: List[int] = field(default_factory=list)
    attestations_inserted: int = 0
    window_start: Optional[int] = None
    window_end: Optional[int] = None
    validators_written: int = 0
    validators_failed: int = 0
    validator_batches_failed: int = 0
    epoch: Optional[int] = None
    rows_cleaned: int = 0


class SyncEngine:
    """
    Recurring coordinator that mirrors the chain head into the store.

    Each cycle runs five steps in order: head discovery, slot backfill, validator
    rotation, epoch summary and expiry sweep. A failed head lookup abandons the cycle;
    any other failure is logged and the remaining steps still run. Cycles never
    overlap: the scheduling loop waits for one to finish before timing the next, and
    a lock serializes anyone calling run_cycle() directly.
    """

    def __init__(
        self,
        beacon_api: BeaconAPI,
        store: Store,
        poll_interval_ms: Optional[int] = None,
        slot_lookback: Optional[int] = None,
        validators_per_cycle: Optional[int] = None,
        total_validators: Optional[int] = None,
        slots_per_epoch: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.beacon_api = beacon_api
        self.store = store
        self.poll_interval_ms = poll_interval_ms or config.POLL_INTERVAL_MS
        self.slot_lookback = config.SLOT_LOOKBACK if slot_lookback is None else slot_lookback
        self.validators_per_cycle = validators_per_cycle or config.VALIDATORS_PER_CYCLE
        self.total_validators = total_validators or config.TOTAL_VALIDATORS
        self.slots_per_epoch = slots_per_epoch or config.SLOTS_PER_EPOCH
        self.clock = clock

        self.state = EngineState.STOPPED
        # Not persisted: every process starts rotating from index 0
        self.rotation_offset = 0
        self.cycle_count = 0
        self.last_report: Optional[CycleReport] = None

        self._cycle_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None

        # Chain timing, fetched once for slot timestamps
        self._genesis_time: Optional[int] = None
        self._seconds_per_slot: Optional[int] = None

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def running(self) -> bool:
        return self.state is EngineState.RUNNING

    async def start(self):
        """Connect, run the first cycle in the foreground, then schedule the rest."""
        if self.running:
            raise RuntimeError("Sync engine is already running")

        logger.info("Starting sync engine",
                    poll_interval_ms=self.poll_interval_ms,
                    validators_per_cycle=self.validators_per_cycle)

        self.store.connect()
        await self.beacon_api.start()

        self._stop_event = asyncio.Event()
        self.state = EngineState.RUNNING

        await self.run_cycle()

        # stop() may have been requested while the first cycle ran
        if self.running:
            self._loop_task = asyncio.create_task(self._schedule_loop())
            logger.info(f"Sync engine started, polling every {self.poll_interval_ms}ms")

    async def stop(self):
        """Disarm the schedule, let an in-flight cycle finish, then release connections."""
        if not self.running:
            return

        logger.info("Stopping sync engine...")
        self.state = EngineState.STOPPED
        self._stop_event.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        # A cycle started outside the loop (start() or a direct caller) finishes first
        async with self._cycle_lock:
            pass

        await self.beacon_api.close()
        self.store.close()
        logger.info("Sync engine stopped", cycles=self.cycle_count)

    async def wait(self):
        """Block until the scheduling loop ends."""
        if self._loop_task is not None:
            await asyncio.shield(self._loop_task)

    async def _schedule_loop(self):
        period = self.poll_interval
        next_tick = self.clock() + period

        while self.running:
            delay = next_tick - self.clock()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass

            if not self.running:
                break

            try:
                await self.run_cycle()
            except Exception as e:
                # run_cycle swallows step errors; this only guards the loop itself
                logger.error("Unexpected error in sync cycle", error=str(e))

            next_tick += period
            now = self.clock()
            if next_tick <= now:
                # Overran: one deferred cycle starts right away, missed ticks coalesce
                logger.warning("Sync cycle overran poll interval, next cycle deferred",
                               cycle=self.cycle_count,
                               overrun_ms=int((now - next_tick) * 1000))
                next_tick = now

    async def run_cycle(self) -> CycleReport:
        """Run one full cycle. Never raises for failures inside the cycle."""
        async with self._cycle_lock:
            self.cycle_count += 1
            report = CycleReport(cycle=self.cycle_count)
            started = self.clock()

            try:
                head = await self.beacon_api.get_head()
            except Exception as e:
                logger.error("Head discovery failed, skipping cycle",
                             cycle=report.cycle,
                             error=str(e))
                report.aborted = True
                self.last_report = report
                return report

            report.head_slot = head.slot

            await self._run_step("slots", report, self.ingest_slot_window(head.slot, report))
            await self._run_step("validators", report, self.rotate_validators(report))
            await self._run_step("epoch", report, self.update_epoch_summary(head.slot, report))
            await self._run_step("cleanup", report, self.cleanup_expired(report))

            logger.info(f"Ingested data up to slot {head.slot}",
                        cycle=report.cycle,
                        head_slot=head.slot,
                        proposed=report.slots_proposed,
                        missed=report.slots_missed,
                        failed_slots=len(report.slots_failed),
                        validators=report.validators_written,
                        failed_steps=",".join(report.failed_steps) or None,
                        duration_ms=int((self.clock() - started) * 1000))

            self.last_report = report
            return report

    async def _run_step(self, name: str, report: CycleReport, step):
        try:
            await step
        except Exception as e:
            logger.error(f"Sync step '{name}' failed",
                         cycle=report.cycle,
                         head_slot=report.head_slot,
                         error=str(e))
            report.failed_steps.append(name)

    # Step 2: slot backfill

    def slot_window(self, head_slot: int) -> Tuple[int, int]:
        """Inclusive slot range refreshed for a given head."""
        return max(0, head_slot - self.slot_lookback), head_slot

    async def ingest_slot_window(self, head_slot: int, report: CycleReport):
        start_slot, end_slot = self.slot_window(head_slot)
        await self._ensure_chain_timing()

        for slot in range(start_slot, end_slot + 1):
            try:
                status, inserted = await self.ingest_slot(slot)
            except Exception as e:
                logger.warning("Failed to ingest slot", slot=slot, error=str(e))
                report.slots_failed.append(slot)
                continue

            if status is SlotStatus.MISSED:
                report.slots_missed += 1
            else:
                report.slots_proposed += 1
            report.attestations_inserted += inserted

    async def ingest_slot(self, slot: int) -> Tuple[SlotStatus, int]:
        """Fetch and persist one slot. Returns its status and the attestations inserted."""
        timestamp = slot_timestamp_or_now(slot, self._genesis_time, self._seconds_per_slot)

        header = await self.beacon_api.get_block_header(slot)
        if isinstance(header, NotFound):
            self.store.upsert_slot(Slot.missed(slot, timestamp))
            return SlotStatus.MISSED, 0

        body = await self.beacon_api.get_block(slot)
        if isinstance(body, NotFound):
            logger.debug("Block body unavailable, recording header only", slot=slot)
            body = None

        if header.slot != slot:
            logger.warning("Node returned a header for another slot", slot=slot, header_slot=header.slot)

        self.store.upsert_slot(Slot.proposed(slot, header, body, timestamp))

        inserted = 0
        for attestation in (body.attestations if body else []):
            try:
                if self.store.insert_attestation(attestation.model_copy(update={"included_in_block": slot})):
                    inserted += 1
            except Exception as e:
                logger.warning("Failed to insert attestation",
                               slot=slot,
                               committee_index=attestation.committee_index,
                               validator_index=attestation.validator_index,
                               error=str(e))
        return SlotStatus.PROPOSED, inserted

    async def _ensure_chain_timing(self):
        if self._genesis_time is not None and self._seconds_per_slot is not None:
            return
        try:
            self._genesis_time = await self.beacon_api.get_genesis_time()
            self._seconds_per_slot = await self.beacon_api.get_seconds_per_slot()
            logger.info("Chain timing loaded",
                        genesis_time=self._genesis_time,
                        seconds_per_slot=self._seconds_per_slot)
        except Exception as e:
            self._genesis_time = None
            self._seconds_per_slot = None
            logger.warning("Chain timing unavailable, using wall clock for slot timestamps",
                           error=str(e))

    # Step 3: validator rotation

    def rotation_window(self, offset: int) -> Tuple[int, int]:
        """Inclusive validator index range covered at a given rotation offset."""
        window_start = (offset * self.validators_per_cycle) % self.total_validators
        window_end = min(window_start + self.validators_per_cycle - 1, self.total_validators - 1)
        return window_start, window_end

    async def rotate_validators(self, report: CycleReport):
        window_start, window_end = self.rotation_window(self.rotation_offset)
        report.window_start = window_start
        report.window_end = window_end

        try:
            logger.info(f"Fetching validators {window_start}-{window_end}",
                        rotation_offset=self.rotation_offset)
            result = await self.beacon_api.get_validators(window_start, window_end)
            report.validator_batches_failed = len(result.failed)

            for validator in result.validators:
                try:
                    self.store.upsert_validator(validator)
                    report.validators_written += 1
                except Exception as e:
                    report.validators_failed += 1
                    logger.debug("Failed to upsert validator",
                                 validator_index=validator.validator_index,
                                 error=str(e))

            if report.validators_failed:
                logger.warning("Some validator upserts failed",
                               window_start=window_start,
                               window_end=window_end,
                               failed=report.validators_failed)
        finally:
            # Advance even on failure
            self.rotation_offset += 1
            logger.info(f"Validator rotation offset advanced to: {self.rotation_offset}")

    # Step 4: epoch summary

    async def update_epoch_summary(self, head_slot: int, report: CycleReport):
        epoch_number = head_slot // self.slots_per_epoch
        finality = await self.beacon_api.get_finality_checkpoints()
        aggregates = self.store.validator_aggregates()

        epoch = Epoch.summarize(
            epoch_number,
            finality,
            aggregates,
            timestamp=utc_now(),
            slots_per_epoch=self.slots_per_epoch
        )
        self.store.upsert_epoch(epoch)
        report.epoch = epoch_number

    # Step 5: expiry sweep

    async def cleanup_expired(self, report: CycleReport):
        removed = self.store.cleanup_expired()
        report.rows_cleaned = removed
        if removed > 0:
            logger.info(f"Cleaned up {removed} expired records")
