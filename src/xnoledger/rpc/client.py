"""
xnoledger/rpc/client.py

JSON-RPC client for the Nano ledger service.

Provides methods for:
- Account state and balance queries
- Pending (receivable) block discovery
- Proof-of-work generation
- Block submission
- Account history lookups

Addresses sent to the service are always re-encoded with the nano_ prefix.
Raw amounts are parsed from decimal strings into integers.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..address import decode_address, normalize_address
from ..config import LedgerConfig
from ..errors import (
    AccountNotFound,
    RPCError,
    classify_rejection,
    is_already_processed,
)
from ..metrics import LedgerMetrics
from ..models import AccountState, HistoryEntry, PendingBlock
from ..units import parse_raw
from .connection import RPCConnection

logger = logging.getLogger("xnoledger.rpc.client")


class NanoRPCClient:
    """
    Client for one RPC endpoint.

    Example:
        client = create_client(LedgerConfig.from_env())

        state = await client.account_info("nano_1abc...")
        pending = await client.pending("nano_1abc...", count=10)

        await client.close()
    """

    def __init__(
        self,
        connection: RPCConnection,
        name: str = "primary",
        metrics: Optional[LedgerMetrics] = None,
    ):
        """
        Initialize client.

        Args:
            connection: Transport to the endpoint
            name: Label used in logs and metrics
            metrics: Optional metrics collector
        """
        self.connection = connection
        self.name = name
        self.metrics = metrics

    @property
    def url(self) -> str:
        return self.connection.url

    async def _call(self, action: str, timeout: Optional[float] = None,
                    **params: Any) -> Dict[str, Any]:
        """
        Make an RPC call and return the raw response.

        Error payloads are returned, not raised; callers decide what an
        error string means for their action.
        """
        payload = {"action": action}
        payload.update(params)

        start = time.time()
        try:
            data = await self.connection.post(payload, timeout=timeout)
        except RPCError as e:
            if self.metrics is not None:
                self.metrics.record_operation(
                    action, False, self.name, (time.time() - start) * 1000, str(e)
                )
            raise
        if self.metrics is not None:
            self.metrics.record_operation(
                action, "error" not in data, self.name,
                (time.time() - start) * 1000, data.get("error"),
            )
        return data

    @staticmethod
    def _raise_error(action: str, data: Dict[str, Any]) -> None:
        if "error" in data:
            raise RPCError(f"{action} failed: {data['error']}", action=action)

    # ========================================================================
    # ACCOUNT QUERIES
    # ========================================================================

    async def account_info(self, address: str) -> AccountState:
        """
        Get current state of an opened account.

        Args:
            address: Account address (any prefix)

        Returns:
            AccountState with frontier, balance and representative

        Raises:
            AccountNotFound: If the account has never been opened
            RPCError: On any other failure
        """
        account = normalize_address(address)
        data = await self._call(
            "account_info",
            account=account,
            representative="true",
            receivable="true",
            include_confirmed="false",
        )
        if "error" in data:
            if "not found" in str(data["error"]).lower():
                raise AccountNotFound(account)
            self._raise_error("account_info", data)
        if "frontier" not in data or "balance" not in data:
            raise RPCError("account_info: response missing frontier or balance",
                           action="account_info")

        receivable = data.get("receivable", data.get("pending", "0"))
        return AccountState(
            address=address,
            public_key=decode_address(account),
            frontier=data["frontier"].upper(),
            representative=data.get("representative"),
            balance_raw=parse_raw(data["balance"]),
            receivable_raw=parse_raw(receivable or "0"),
            block_count=int(data.get("block_count", 0)),
        )

    async def account_balance(self, address: str) -> Tuple[int, int]:
        """
        Get balance and receivable amount.

        Returns:
            (balance_raw, receivable_raw); both zero for unopened accounts
        """
        data = await self._call("account_balance", account=normalize_address(address))
        self._raise_error("account_balance", data)
        balance = parse_raw(data.get("balance", "0") or "0")
        receivable = parse_raw(data.get("receivable", data.get("pending", "0")) or "0")
        return balance, receivable

    async def pending(self, address: str, count: int = 10,
                      threshold_raw: Optional[int] = None) -> List[PendingBlock]:
        """
        List pending (receivable) blocks for an account.

        Args:
            address: Account address
            count: Maximum number of blocks
            threshold_raw: Ignore blocks below this amount

        Returns:
            PendingBlock list in the order the service returned them
        """
        params = {
            "account": normalize_address(address),
            "count": str(count),
            "source": "true",
            "include_only_confirmed": "true",
        }
        if threshold_raw is not None:
            params["threshold"] = str(threshold_raw)
        data = await self._call("pending", **params)
        self._raise_error("pending", data)

        blocks = data.get("blocks") or {}
        if not isinstance(blocks, dict):
            raise RPCError("pending: unexpected blocks format", action="pending")

        result = []
        for block_hash, info in blocks.items():
            if isinstance(info, dict):
                amount = parse_raw(info.get("amount", "0"))
                source = info.get("source")
            else:
                amount = parse_raw(info)
                source = None
            result.append(PendingBlock(
                source_hash=block_hash.upper(),
                amount_raw=amount,
                source_account=source,
            ))
        return result

    async def account_history(self, address: str, count: int = 20) -> List[HistoryEntry]:
        """Get the most recent blocks of an account, newest first."""
        data = await self._call(
            "account_history", account=normalize_address(address), count=str(count)
        )
        if "error" in data:
            if "not found" in str(data["error"]).lower():
                return []
            self._raise_error("account_history", data)

        history = data.get("history") or []
        entries = []
        for item in history:
            timestamp = item.get("local_timestamp")
            height = item.get("height")
            entries.append(HistoryEntry(
                hash=item.get("hash", "").upper(),
                kind=item.get("type", ""),
                account=item.get("account", ""),
                amount_raw=parse_raw(item.get("amount", "0") or "0"),
                timestamp=int(timestamp) if timestamp else None,
                height=int(height) if height else None,
            ))
        return entries

    # ========================================================================
    # WORK AND SUBMISSION
    # ========================================================================

    async def work_generate(self, root: str, difficulty: Optional[str] = None,
                            timeout: Optional[float] = None) -> str:
        """
        Ask the service for proof-of-work.

        Args:
            root: Hash to compute work against
            difficulty: Threshold as 16 hex characters

        Returns:
            Work value as 16 hex characters
        """
        params = {"hash": root}
        if difficulty:
            params["difficulty"] = difficulty
        data = await self._call("work_generate", timeout=timeout, **params)
        self._raise_error("work_generate", data)
        work = data.get("work")
        if not work:
            raise RPCError("work_generate: response missing work", action="work_generate")
        return work

    async def process(self, block) -> str:
        """
        Submit a signed block.

        Args:
            block: Complete StateBlock

        Returns:
            Hash of the accepted block. A block the ledger already holds
            ("Old block") counts as accepted.

        Raises:
            BlockRejected: Or one of its subclasses, with the node's reason
            RPCError: On transport failure
        """
        block_hash = block.hash
        data = await self._call(
            "process",
            json_block="true",
            subtype=block.kind.value,
            block=block.to_rpc(),
        )
        if "error" in data:
            reason = str(data["error"])
            if is_already_processed(reason):
                logger.info(f"Block {block_hash} already in ledger ({self.name})")
                return block_hash
            error_cls = classify_rejection(reason)
            raise error_cls(reason, block_hash=block_hash, kind=block.kind.value)

        returned = data.get("hash")
        if not returned:
            raise RPCError("process: response missing hash", action="process",
                           maybe_delivered=True)
        if returned.upper() != block_hash:
            logger.warning(f"process returned {returned}, expected {block_hash}")
        return returned.upper()

    async def close(self) -> None:
        await self.connection.close()

    async def __aenter__(self) -> "NanoRPCClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def create_client(
    config: LedgerConfig,
    session: Optional[aiohttp.ClientSession] = None,
    metrics: Optional[LedgerMetrics] = None,
) -> NanoRPCClient:
    """
    Create a client for the primary endpoint of a configuration.

    Args:
        config: Ledger configuration
        session: Optional shared aiohttp session

    Returns:
        NanoRPCClient
    """
    connection = RPCConnection(
        config.rpc_url,
        headers=config.auth_headers(),
        timeout=config.request_timeout,
        session=session,
    )
    return NanoRPCClient(connection, name="primary", metrics=metrics)


def create_public_clients(
    config: LedgerConfig,
    session: Optional[aiohttp.ClientSession] = None,
    metrics: Optional[LedgerMetrics] = None,
) -> List[NanoRPCClient]:
    """Unauthenticated clients for each public submission endpoint."""
    clients = []
    for i, url in enumerate(config.public_submit_urls):
        connection = RPCConnection(url, timeout=config.request_timeout, session=session)
        clients.append(NanoRPCClient(connection, name=f"public-{i + 1}", metrics=metrics))
    return clients
