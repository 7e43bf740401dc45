"""
Ledger RPC client.

Reads chain liveness data (block height, block age, pending transactions)
and issues the one remediation the ledger supports: replacing a stuck
pending transaction with a zero-value self-transfer at the same nonce.
Confirmed transactions cannot be rolled back.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3

logger = logging.getLogger(__name__)

# Replacement transactions must outbid the original by at least 10%
REPLACEMENT_GAS_BUMP = 1.125


class LedgerError(Exception):
    """Ledger RPC call failed or the request cannot be honoured."""
    pass


class LedgerClient:
    """
    Async ledger client on web3's AsyncWeb3.

    Usage:
        ledger = LedgerClient("http://localhost:8545")
        await ledger.connect()
        metrics = await ledger.get_health_metrics()
        # {"block_height": 1234, "block_delay": 12.0, "pending_transactions": 3}
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: Optional[str] = None,
        timeout: float = 10.0,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.rpc_url = rpc_url
        self._private_key = private_key
        self._timeout = timeout
        self._w3 = w3

    def _build(self) -> AsyncWeb3:
        return AsyncWeb3(
            AsyncHTTPProvider(
                self.rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=self._timeout)},
            )
        )

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            self._w3 = self._build()
        return self._w3

    async def connect(self) -> None:
        """Create the provider and verify the node answers."""
        if not await self.is_connected():
            raise LedgerError(f"Cannot reach ledger node at {self.rpc_url}")
        logger.info(f"Connected to ledger node at {self.rpc_url}")

    async def is_connected(self) -> bool:
        try:
            return bool(await self.w3.is_connected())
        except Exception as e:
            logger.debug(f"Ledger connectivity check failed: {e}")
            return False

    async def reconnect(self) -> Dict[str, Any]:
        """Drop the provider and build a fresh one."""
        self._w3 = self._build()
        try:
            height = await self.w3.eth.block_number
        except Exception as e:
            raise LedgerError(f"Reconnect to {self.rpc_url} failed: {e}") from e
        logger.info(f"Ledger reconnected at block {height}")
        return {"reconnected": True, "block_height": int(height)}

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_block_height(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as e:
            raise LedgerError(f"Cannot read block height: {e}") from e

    async def get_block_delay(self) -> float:
        """Seconds since the latest block was produced."""
        try:
            block = await self.w3.eth.get_block("latest")
        except Exception as e:
            raise LedgerError(f"Cannot read latest block: {e}") from e
        return max(0.0, time.time() - float(block["timestamp"]))

    async def get_pending_transaction_count(self) -> int:
        try:
            block = await self.w3.eth.get_block("pending")
        except Exception as e:
            raise LedgerError(f"Cannot read pending block: {e}") from e
        return len(block.get("transactions", []))

    async def get_health_metrics(self) -> Dict[str, float]:
        """Block height, block delay and pending count in one call."""
        return {
            "block_height": await self.get_block_height(),
            "block_delay": await self.get_block_delay(),
            "pending_transactions": await self.get_pending_transaction_count(),
        }

    # =========================================================================
    # Remediation
    # =========================================================================

    async def rollback_transaction(self, tx_hash: str) -> Dict[str, Any]:
        """
        Replace a pending transaction so it never confirms.

        Sends a zero-value transfer to self with the same nonce and a higher
        gas price. Requires the private key of the original sender.

        Raises:
            LedgerError: If no key is configured, the transaction is already
                mined, was sent by another account, or the RPC call fails.
        """
        if not self._private_key:
            raise LedgerError("Rollback requires a signing key")

        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
        except Exception as e:
            raise LedgerError(f"Cannot load transaction {tx_hash}: {e}") from e

        if tx.get("blockNumber") is not None:
            raise LedgerError(f"Transaction {tx_hash} is already confirmed")

        account = self.w3.eth.account.from_key(self._private_key)
        if tx["from"] != account.address:
            raise LedgerError(f"Transaction {tx_hash} was not sent by {account.address}")

        try:
            gas_price = tx.get("gasPrice") or await self.w3.eth.gas_price
            replacement = {
                "from": account.address,
                "to": account.address,
                "value": 0,
                "nonce": tx["nonce"],
                "gas": 21000,
                "gasPrice": int(gas_price * REPLACEMENT_GAS_BUMP) + 1,
                "chainId": await self.w3.eth.chain_id,
            }
            signed = account.sign_transaction(replacement)
            new_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise LedgerError(f"Replacement for {tx_hash} failed: {e}") from e

        logger.warning(f"Replaced pending transaction {tx_hash} with {new_hash.hex()}")
        return {"replaced": tx_hash, "replacement": new_hash.hex(), "nonce": tx["nonce"]}
