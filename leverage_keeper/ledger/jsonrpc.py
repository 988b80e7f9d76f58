"""JSON-RPC execution ledger client with endpoint fallback."""
from __future__ import annotations

import asyncio
import json
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..amounts import Amount
from ..config import LedgerConfig
from ..errors import LedgerOutcomeError, LedgerRejectedError, LedgerUnavailableError
from ..models import (
    HarvestOutcome,
    LedgerPosition,
    LiquidationOutcome,
    PositionStatus,
    SettlementOutcome,
)
from . import decoding

logger = logging.getLogger(__name__)

# JSON-RPC "server error" range; anything else is treated as a rejection.
_TRANSIENT_CODES = range(-32099, -31999)


class JsonRpcLedger:
    """Keeper gateway client speaking JSON-RPC over HTTPS.

    Endpoints are tried in order starting from the last one that worked.
    Transport failures fall through to the next endpoint; a business
    rejection from any endpoint is raised immediately.
    """

    def __init__(self, config: LedgerConfig) -> None:
        if not config.rpc_endpoints:
            raise ValueError("JsonRpcLedger needs at least one endpoint")
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        if response.status >= 500:
                            raise LedgerUnavailableError(
                                f"{method}: HTTP {response.status}"
                            )
                        try:
                            result = await response.json()
                        except json.JSONDecodeError as e:
                            raise LedgerOutcomeError(
                                f"{method}: response is not valid JSON"
                            ) from e
            except (aiohttp.ClientError, asyncio.TimeoutError, LedgerUnavailableError) as e:
                last_error = e
                logger.warning("Ledger endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if not isinstance(result, dict):
                raise LedgerOutcomeError(f"{method}: response is not a JSON-RPC object")
            if "error" in result:
                self._raise_rpc_error(method, result["error"])

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to ledger endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if "result" not in result:
                raise LedgerOutcomeError(f"{method}: response has no result")
            return result["result"]

        raise LedgerUnavailableError(
            f"All ledger endpoints failed for {method}. Last error: {last_error}"
        )

    @staticmethod
    def _raise_rpc_error(method: str, error: Any) -> None:
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message", error) if isinstance(error, dict) else error
        if isinstance(code, int) and code in _TRANSIENT_CODES:
            raise LedgerUnavailableError(f"{method}: {message} (code {code})")
        raise LedgerRejectedError(f"{method}: {message} (code {code})")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_positions(self) -> list[LedgerPosition]:
        result = await self.rpc_call("leverage_listPositions", [])
        if not isinstance(result, list):
            raise LedgerOutcomeError("leverage_listPositions: expected a list")
        return [decoding.decode_position(item) for item in result]

    async def read_position_status(self, position_id: int) -> PositionStatus:
        result = await self.rpc_call("leverage_getPositionStatus", [position_id])
        return decoding.decode_status(result)

    async def read_health_factor(self, position_id: int, price: Amount) -> int:
        result = await self.rpc_call(
            "leverage_getHealthFactor", [position_id, str(price.units)]
        )
        return decoding.decode_int(result, "healthFactor")

    async def read_accrued_interest(self, position_id: int) -> Amount:
        result = await self.rpc_call("leverage_getAccruedInterest", [position_id])
        return decoding.decode_stable(result, "accruedInterest")

    async def read_outstanding_debt(self, position_id: int) -> Amount:
        result = await self.rpc_call("leverage_getOutstandingDebt", [position_id])
        return decoding.decode_stable(result, "outstandingDebt")

    async def check_liquidity(self, collateral_amount: Amount) -> bool:
        result = await self.rpc_call(
            "leverage_checkLiquidity", [str(collateral_amount.units)]
        )
        return bool(result)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def execute_harvest(self, position_id: int, price: Amount) -> HarvestOutcome:
        logger.info("Harvesting yield for position %d...", position_id)
        result = await self.rpc_call(
            "leverage_harvestYield", [position_id, str(price.units)]
        )
        return decoding.decode_harvest(result)

    async def execute_liquidation(
        self, position_id: int, price: Amount
    ) -> LiquidationOutcome:
        logger.warning("Liquidating position %d...", position_id)
        result = await self.rpc_call(
            "leverage_liquidatePosition", [position_id, str(price.units)]
        )
        return decoding.decode_liquidation(result)

    async def execute_settlement(
        self, position_id: int, gross_amount: Amount
    ) -> SettlementOutcome:
        logger.info(
            "Processing settlement for position %d: %s USDC",
            position_id,
            gross_amount.format(),
        )
        result = await self.rpc_call(
            "leverage_processSettlement", [position_id, str(gross_amount.units)]
        )
        return decoding.decode_settlement(result)
