import aiohttp
import asyncio
from typing import Optional, Dict, Any, List, Tuple, Union
from pydantic import BaseModel, Field

from beacon_ingestor.config import config
from beacon_ingestor.models import (
    NotFound,
    HeadInfo,
    BlockHeader,
    BlockBody,
    FinalityCheckpoints,
    Validator
)
from beacon_ingestor.models.chain import HeaderLookup, BlockLookup, parse_uint
from beacon_ingestor.utils.logger import logger
from beacon_ingestor.utils.retry import api_retry


class BeaconAPIError(Exception):
    """A beacon node request failed for a reason other than 'not found'."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(f"{message} (url={url}, status={status})")


class ValidatorRange(BaseModel):
    """Outcome of fetching one contiguous validator index range in sub-batches."""

    start: int
    end: int
    validators: List[Validator] = Field(default_factory=list)
    missing: List[Tuple[int, int]] = Field(default_factory=list)
    failed: List[Tuple[int, int]] = Field(default_factory=list)


class BeaconAPI:
    """Beacon node API client with retry logic and typed results."""

    def __init__(self, base_url: Optional[str] = None, timeout_ms: Optional[int] = None,
                 max_attempts: Optional[int] = None, batch_size: Optional[int] = None,
                 slots_per_epoch: Optional[int] = None):
        self.base_url = (base_url or config.BEACON_NODE_URL).rstrip('/')
        self.timeout_ms = timeout_ms or config.REQUEST_TIMEOUT_MS
        self.batch_size = batch_size or config.VALIDATOR_BATCH_SIZE
        self.slots_per_epoch = slots_per_epoch or config.SLOTS_PER_EPOCH
        self.session: Optional[aiohttp.ClientSession] = None
        self._fetch_json = api_retry(max_attempts or config.API_MAX_ATTEMPTS)(self._fetch_json_once)

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the HTTP session."""
        if not self.session:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"Accept": "application/json"}
            )

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _fetch_json_once(self, url: str, params: Optional[Dict[str, str]] = None) -> Optional[Dict[str, Any]]:
        """One GET attempt. Returns None for 404, raises for every other failure."""
        async with self.session.get(url, params=params) as response:
            if response.status == 404:
                return None
            response.raise_for_status()
            return await response.json()

    async def get(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> Optional[Dict[str, Any]]:
        """GET an endpoint. None means the node answered 404."""
        if not self.session:
            await self.start()

        url = f"{self.base_url}{endpoint}"

        try:
            return await self._fetch_json(url, params)
        except aiohttp.ClientResponseError as e:
            logger.warning("Beacon API request failed", url=url, status=e.status, error=e.message)
            raise BeaconAPIError(url, e.message, e.status) from e
        except asyncio.TimeoutError as e:
            logger.warning("Beacon API request timeout", url=url, timeout_ms=self.timeout_ms)
            raise BeaconAPIError(url, "request timed out") from e
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning("Beacon API request error", url=url, error=str(e))
            raise BeaconAPIError(url, str(e)) from e

    async def get_required(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """GET an endpoint that must exist; a 404 is an error here."""
        data = await self.get(endpoint, params)
        if data is None:
            raise BeaconAPIError(f"{self.base_url}{endpoint}", "resource not found", 404)
        return data

    async def get_head(self) -> HeadInfo:
        """Get the current head slot and root."""
        data = await self.get_required("/eth/v1/beacon/headers/head")
        return HeadInfo.from_api_response(data, self.slots_per_epoch)

    async def get_block_header(self, slot: int) -> HeaderLookup:
        """Get the block header at a slot, NotFound when the slot is empty."""
        data = await self.get(f"/eth/v1/beacon/headers/{slot}")
        if data is None:
            return NotFound(resource="header", identifier=str(slot))
        return BlockHeader.from_api_response(data)

    async def get_block(self, slot: int) -> BlockLookup:
        """Get block body metadata at a slot, NotFound when unavailable."""
        data = await self.get(f"/eth/v2/beacon/blocks/{slot}")
        if data is None:
            return NotFound(resource="block", identifier=str(slot))
        return BlockBody.from_api_response(data)

    async def get_finality_checkpoints(self, state_id: str = "head") -> FinalityCheckpoints:
        """Get the finalized and justified checkpoints of a state."""
        data = await self.get_required(f"/eth/v1/beacon/states/{state_id}/finality_checkpoints")
        return FinalityCheckpoints.from_api_response(data)

    async def get_genesis_time(self) -> int:
        """Get the chain's genesis timestamp (unix seconds)."""
        data = await self.get_required("/eth/v1/beacon/genesis")
        return parse_uint(data["data"]["genesis_time"])

    async def get_seconds_per_slot(self) -> int:
        """Get SECONDS_PER_SLOT from the chain specification."""
        data = await self.get_required("/eth/v1/config/spec")
        return parse_uint(data["data"]["SECONDS_PER_SLOT"])

    async def get_validator_batch(self, indices: List[int], state_id: str = "head") -> Union[List[Validator], NotFound]:
        """Get validators by index in a single request."""
        ids = ",".join(str(index) for index in indices)
        data = await self.get(f"/eth/v1/beacon/states/{state_id}/validators", params={"id": ids})
        if data is None:
            return NotFound(resource="validators", identifier=ids)
        return [Validator.from_api_response(entry) for entry in data.get("data", [])]

    async def get_validators(self, start: int, end: int, state_id: str = "head") -> ValidatorRange:
        """
        Get validators for the inclusive index range [start, end].

        The range is split into batches of `batch_size` indices to stay under the node's
        URL length limits. A batch the node reports as not found is skipped, and so is a
        batch that fails outright; neither aborts the rest of the range.
        """
        result = ValidatorRange(start=start, end=end)

        for batch_start in range(start, end + 1, self.batch_size):
            batch_end = min(batch_start + self.batch_size - 1, end)
            indices = list(range(batch_start, batch_end + 1))

            try:
                batch = await self.get_validator_batch(indices, state_id)
            except (BeaconAPIError, KeyError, ValueError) as e:
                logger.error("Validator batch failed",
                             batch_start=batch_start,
                             batch_end=batch_end,
                             error=str(e))
                result.failed.append((batch_start, batch_end))
                continue

            if isinstance(batch, NotFound):
                logger.warning("Validators not found, continuing",
                               batch_start=batch_start,
                               batch_end=batch_end)
                result.missing.append((batch_start, batch_end))
                continue

            result.validators.extend(batch)

        logger.info("Fetched validator range",
                    window_start=start,
                    window_end=end,
                    fetched=len(result.validators),
                    missing_batches=len(result.missing),
                    failed_batches=len(result.failed))
        return result
