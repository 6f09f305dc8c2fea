"""
Execution dispatcher for approved transaction requests.

Routes a request to one of three strategies:
- Simulation: gas estimate only, nothing is broadcast
- Direct: submitted by the connected wallet's signer
- Relayer: POSTed to the first usable relay endpoint

The dispatcher never retries. Any failure surfaces as a DispatchFailure whose
message is the only thing recorded on the request.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ...config import settings
from ...providers.base import NetworkProvider, WalletConnection
from ..errors import DispatchFailure, GasEstimationError, SignerUnavailable
from ..validation import (
    addresses_equal,
    validate_address,
    validate_gas_limit,
    validate_value,
)
from .models import ExecutionMethod, ExecutionResult, TransactionRequest
from .relayers import DEFAULT_RELAYERS, RelayerService, select_relayer, submit_to_relayer


logger = logging.getLogger(__name__)


def revalidate(tx: TransactionRequest) -> None:
    """
    Check address, value and gas fields again right before dispatch.

    Raises:
        DispatchFailure: naming the first field that fails
    """
    to_check = validate_address(tx.to_address)
    if not to_check.valid:
        raise DispatchFailure(f"Invalid 'to' address: {to_check.error}")

    from_check = validate_address(tx.from_address)
    if not from_check.valid:
        raise DispatchFailure(f"Invalid 'from' address: {from_check.error}")

    if tx.value:
        value_check = validate_value(tx.value)
        if not value_check.valid:
            raise DispatchFailure(f"Invalid transaction value: {value_check.error}")

    if tx.gas_limit is not None:
        gas_check = validate_gas_limit(tx.gas_limit)
        if not gas_check.valid:
            raise DispatchFailure(f"Invalid gas limit: {gas_check.error}")


class ExecutionDispatcher:
    """
    Dispatches approved requests to the strategy named by ``request.method``.

    Collaborators are optional; a strategy whose collaborator is missing
    fails with a DispatchFailure instead of raising at construction.
    """

    def __init__(
        self,
        provider: Optional[NetworkProvider] = None,
        wallet_connection: Optional[WalletConnection] = None,
        relayers: Optional[List[RelayerService]] = None,
        *,
        gas_estimation_timeout_s: Optional[float] = None,
        relayer_timeout_s: Optional[float] = None,
        relayer_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.wallet_connection = wallet_connection
        self.relayers = relayers if relayers is not None else list(DEFAULT_RELAYERS)
        self.gas_estimation_timeout_s = (
            gas_estimation_timeout_s
            if gas_estimation_timeout_s is not None
            else settings.gas_estimation_timeout_ms / 1000
        )
        self.relayer_timeout_s = relayer_timeout_s
        self._relayer_transport = relayer_transport

    async def dispatch(self, tx: TransactionRequest) -> ExecutionResult:
        """
        Run the strategy for ``tx.method``.

        Returns:
            ExecutionResult with the result handle on success

        Raises:
            DispatchFailure: on any strategy failure
        """
        handlers = {
            ExecutionMethod.SIMULATION: self.simulate,
            ExecutionMethod.DIRECT_ONCHAIN: self.execute_direct,
            ExecutionMethod.RELAYER: self.execute_relayer,
        }
        handler = handlers.get(tx.method)
        if handler is None:
            raise DispatchFailure(f"Unsupported execution method: {tx.method}")

        logger.info(f"Dispatching {tx.id} via {tx.method.value}")
        try:
            return await handler(tx)
        except DispatchFailure:
            raise
        except httpx.HTTPError as e:
            # The error text carries the endpoint URL; only the kind is recorded.
            logger.error(f"Dispatch of {tx.id} failed: {type(e).__name__}")
            raise DispatchFailure(f"Network request failed ({type(e).__name__})") from e
        except Exception as e:
            logger.error(f"Dispatch of {tx.id} failed: {e}")
            raise DispatchFailure(str(e) or type(e).__name__) from e

    async def estimate_gas(self, params: Dict[str, Any]) -> int:
        """Estimate gas under the estimation timeout and enforce the gas ceiling."""
        if self.provider is None:
            raise GasEstimationError("No network provider available for gas estimation")

        try:
            estimate = await asyncio.wait_for(
                self.provider.estimate_gas(params),
                timeout=self.gas_estimation_timeout_s,
            )
        except asyncio.TimeoutError:
            raise GasEstimationError("Gas estimation timeout")

        if estimate > settings.max_gas_limit:
            raise GasEstimationError(
                f"Gas estimate {estimate} exceeds maximum {settings.max_gas_limit}"
            )
        return estimate

    async def simulate(self, tx: TransactionRequest) -> ExecutionResult:
        revalidate(tx)
        estimate = await self.estimate_gas({
            "from": tx.from_address,
            "to": tx.to_address,
            "value": tx.value,
            "data": tx.data or "0x",
        })
        logger.debug(f"Simulated {tx.id}: gas {estimate}")
        return ExecutionResult(
            method=ExecutionMethod.SIMULATION,
            success=True,
            hash=f"simulated_{tx.id}",
            gas_used=estimate,
        )

    async def execute_direct(self, tx: TransactionRequest) -> ExecutionResult:
        revalidate(tx)

        signer = None
        if self.wallet_connection is not None:
            signer = await self.wallet_connection.get_signer()
        if signer is None:
            raise SignerUnavailable()

        signer_address = await signer.get_address()
        if not addresses_equal(signer_address, tx.from_address):
            raise DispatchFailure("Signer address does not match transaction sender")

        tx_hash = await signer.send_transaction(tx.to_tx_params())
        return ExecutionResult(
            method=ExecutionMethod.DIRECT_ONCHAIN,
            success=True,
            hash=tx_hash,
        )

    async def execute_relayer(self, tx: TransactionRequest) -> ExecutionResult:
        relayer = select_relayer(self.relayers)
        revalidate(tx)

        tx_hash = await submit_to_relayer(
            tx,
            relayer,
            timeout_s=self.relayer_timeout_s,
            transport=self._relayer_transport,
        )
        return ExecutionResult(
            method=ExecutionMethod.RELAYER,
            success=True,
            hash=tx_hash,
        )
