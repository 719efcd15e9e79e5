"""
Tests for xnoledger/rpc/

Tests the HTTP transport and the JSON-RPC client response handling.
"""

import asyncio
import json

import aiohttp
import pytest
from unittest.mock import AsyncMock, Mock

from xnoledger.blockchain.block_builder import BlockBuilder
from xnoledger.config import LedgerConfig, RAW_PER_XNO
from xnoledger.errors import (
    AccountNotFound,
    BlockRejected,
    InsufficientWork,
    RPCError,
    StaleFrontier,
    UnreceivablePending,
)
from xnoledger.metrics import LedgerMetrics
from xnoledger.models import AccountState, PendingBlock
from xnoledger.rpc import NanoRPCClient, RPCConnection, create_client, create_public_clients
from xnoledger.signing import NanoKeyPair


# ============================================================================
# TEST DATA
# ============================================================================

KEYPAIR = NanoKeyPair.from_seed("0" * 64, 0)
ADDRESS = KEYPAIR.address()
XNO_ADDRESS = KEYPAIR.address("xno_")
FRONTIER = "AB" * 32


class FakeResponse:
    """aiohttp response stand-in."""

    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def text(self):
        return self._body


class FakeRequest:
    """Async context manager returned by FakeSession.post."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self.response

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """aiohttp.ClientSession stand-in recording posted payloads."""

    def __init__(self, status=200, body="{}", error=None):
        self.status = status
        self.body = body
        self.error = error
        self.requests = []
        self.closed = False

    def post(self, url, data=None, headers=None, timeout=None):
        self.requests.append({"url": url, "data": json.loads(data), "headers": headers})
        return FakeRequest(FakeResponse(self.status, self.body), self.error)

    async def close(self):
        self.closed = True


def make_client(response=None, error=None, metrics=None):
    """NanoRPCClient over a mock connection."""
    connection = Mock()
    connection.url = "https://rpc.example"
    connection.post = AsyncMock(return_value=response, side_effect=error)
    connection.close = AsyncMock()
    return NanoRPCClient(connection, name="test", metrics=metrics)


def sent_payload(client):
    return client.connection.post.await_args.args[0]


def signed_receive_block():
    account = AccountState(
        address=ADDRESS,
        public_key=KEYPAIR.public_key,
        frontier=FRONTIER,
        representative=ADDRESS,
        balance_raw=RAW_PER_XNO,
    )
    block = BlockBuilder().build_receive(account, PendingBlock("CD" * 32, RAW_PER_XNO))
    return block.with_work("0" * 16).with_signature(KEYPAIR.sign(block.hash))


# ============================================================================
# CONNECTION
# ============================================================================

class TestRPCConnection:
    """Tests for RPCConnection.post."""

    @pytest.mark.asyncio
    async def test_posts_json_with_headers(self):
        """Test the payload is JSON and configured headers are sent."""
        session = FakeSession(body='{"balance": "1"}')
        connection = RPCConnection(
            "https://rpc.example", headers={"Authorization": "key"}, session=session
        )

        data = await connection.post({"action": "account_balance"})

        assert data == {"balance": "1"}
        request = session.requests[0]
        assert request["url"] == "https://rpc.example"
        assert request["data"] == {"action": "account_balance"}
        assert request["headers"]["Authorization"] == "key"
        assert request["headers"]["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_error_payload_returned(self):
        """Test error bodies are returned for the client to interpret, even on HTTP errors."""
        session = FakeSession(status=400, body='{"error": "Account not found"}')
        connection = RPCConnection("https://rpc.example", session=session)
        assert await connection.post({"action": "account_info"}) == {
            "error": "Account not found"
        }

    @pytest.mark.asyncio
    async def test_http_error_without_body(self):
        """Test HTTP errors without an error payload raise."""
        session = FakeSession(status=502, body="{}")
        connection = RPCConnection("https://rpc.example", session=session)
        with pytest.raises(RPCError, match="HTTP 502"):
            await connection.post({"action": "pending"})

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Test a non-JSON body raises and may have been delivered."""
        session = FakeSession(body="<html>")
        connection = RPCConnection("https://rpc.example", session=session)
        with pytest.raises(RPCError) as exc:
            await connection.post({"action": "process"})
        assert exc.value.maybe_delivered

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        """Test a JSON body that is not an object raises."""
        session = FakeSession(body="[1, 2]")
        connection = RPCConnection("https://rpc.example", session=session)
        with pytest.raises(RPCError):
            await connection.post({"action": "pending"})

    @pytest.mark.asyncio
    async def test_timeout_may_have_been_delivered(self):
        """Test a timeout is reported as possibly delivered."""
        session = FakeSession(error=asyncio.TimeoutError())
        connection = RPCConnection("https://rpc.example", session=session)
        with pytest.raises(RPCError) as exc:
            await connection.post({"action": "process"})
        assert exc.value.maybe_delivered
        assert exc.value.action == "process"

    @pytest.mark.asyncio
    async def test_disconnect_may_have_been_delivered(self):
        """Test a dropped connection is reported as possibly delivered."""
        session = FakeSession(error=aiohttp.ServerDisconnectedError())
        connection = RPCConnection("https://rpc.example", session=session)
        with pytest.raises(RPCError) as exc:
            await connection.post({"action": "process"})
        assert exc.value.maybe_delivered

    @pytest.mark.asyncio
    async def test_connect_failure_not_delivered(self):
        """Test a refused connection is known not to have been delivered."""
        error = aiohttp.ClientConnectorError(Mock(), OSError(111, "Connection refused"))
        session = FakeSession(error=error)
        connection = RPCConnection("https://rpc.example", session=session)
        with pytest.raises(RPCError) as exc:
            await connection.post({"action": "process"})
        assert not exc.value.maybe_delivered

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self):
        """Test a shared session is left open by close()."""
        session = FakeSession()
        connection = RPCConnection("https://rpc.example", session=session)
        await connection.close()
        assert not session.closed


# ============================================================================
# CLIENT
# ============================================================================

class TestAccountQueries:
    """Tests for account_info, account_balance and account_history."""

    @pytest.mark.asyncio
    async def test_account_info(self):
        """Test account state is parsed and the address is sent as nano_."""
        client = make_client({
            "frontier": FRONTIER.lower(),
            "balance": str(3 * RAW_PER_XNO),
            "representative": ADDRESS,
            "receivable": "5",
            "block_count": "7",
        })

        state = await client.account_info(XNO_ADDRESS)

        assert sent_payload(client)["account"] == ADDRESS
        assert sent_payload(client)["action"] == "account_info"
        assert state.frontier == FRONTIER
        assert state.balance_raw == 3 * RAW_PER_XNO
        assert state.receivable_raw == 5
        assert state.block_count == 7
        assert state.public_key == KEYPAIR.public_key
        assert state.is_open

    @pytest.mark.asyncio
    async def test_account_info_not_found(self):
        """Test an unopened account raises AccountNotFound."""
        client = make_client({"error": "Account not found"})
        with pytest.raises(AccountNotFound):
            await client.account_info(ADDRESS)

    @pytest.mark.asyncio
    async def test_account_info_other_error(self):
        """Test other errors raise RPCError."""
        client = make_client({"error": "Internal failure"})
        with pytest.raises(RPCError, match="Internal failure"):
            await client.account_info(ADDRESS)

    @pytest.mark.asyncio
    async def test_account_info_incomplete(self):
        """Test a response without frontier is refused."""
        client = make_client({"balance": "0"})
        with pytest.raises(RPCError):
            await client.account_info(ADDRESS)

    @pytest.mark.asyncio
    async def test_account_balance(self):
        """Test balance and receivable are parsed, with legacy pending key."""
        client = make_client({"balance": "10", "pending": "4"})
        assert await client.account_balance(ADDRESS) == (10, 4)

    @pytest.mark.asyncio
    async def test_account_history(self):
        """Test history entries are parsed."""
        client = make_client({"history": [{
            "type": "receive",
            "account": ADDRESS,
            "amount": "12",
            "hash": FRONTIER.lower(),
            "local_timestamp": "1700000000",
            "height": "3",
        }]})

        entries = await client.account_history(ADDRESS, count=5)

        assert sent_payload(client)["count"] == "5"
        assert entries[0].hash == FRONTIER
        assert entries[0].kind == "receive"
        assert entries[0].amount_raw == 12
        assert entries[0].timestamp == 1700000000
        assert entries[0].height == 3

    @pytest.mark.asyncio
    async def test_account_history_unopened(self):
        """Test an unopened account has empty history."""
        client = make_client({"error": "Account not found"})
        assert await client.account_history(ADDRESS) == []


class TestPending:
    """Tests for pending."""

    @pytest.mark.asyncio
    async def test_pending_with_source(self):
        """Test detailed pending entries."""
        client = make_client({"blocks": {
            "cd" * 32: {"amount": "100", "source": ADDRESS},
        }})

        blocks = await client.pending(ADDRESS, count=3, threshold_raw=50)

        payload = sent_payload(client)
        assert payload["count"] == "3"
        assert payload["threshold"] == "50"
        assert blocks == [PendingBlock("CD" * 32, 100, ADDRESS)]

    @pytest.mark.asyncio
    async def test_pending_bare_amounts(self):
        """Test hash-to-amount responses."""
        client = make_client({"blocks": {"CD" * 32: "100"}})
        blocks = await client.pending(ADDRESS)
        assert blocks[0].amount_raw == 100
        assert blocks[0].source_account is None

    @pytest.mark.asyncio
    async def test_pending_empty(self):
        """Test the empty-string form the service uses for no blocks."""
        client = make_client({"blocks": ""})
        assert await client.pending(ADDRESS) == []

    @pytest.mark.asyncio
    async def test_pending_bad_format(self):
        """Test an unexpected blocks value raises."""
        client = make_client({"blocks": ["CD" * 32]})
        with pytest.raises(RPCError):
            await client.pending(ADDRESS)


class TestWorkGenerate:
    """Tests for work_generate."""

    @pytest.mark.asyncio
    async def test_work_generate(self):
        """Test work is requested at the given difficulty."""
        client = make_client({"work": "0123456789abcdef"})

        work = await client.work_generate(FRONTIER, "fffffe0000000000", timeout=5)

        assert work == "0123456789abcdef"
        assert sent_payload(client) == {
            "action": "work_generate",
            "hash": FRONTIER,
            "difficulty": "fffffe0000000000",
        }
        assert client.connection.post.await_args.kwargs["timeout"] == 5

    @pytest.mark.asyncio
    async def test_work_generate_error(self):
        """Test error payloads raise."""
        client = make_client({"error": "Work generation disabled"})
        with pytest.raises(RPCError):
            await client.work_generate(FRONTIER)

    @pytest.mark.asyncio
    async def test_work_generate_missing_work(self):
        """Test a response without work raises."""
        client = make_client({})
        with pytest.raises(RPCError):
            await client.work_generate(FRONTIER)


class TestProcess:
    """Tests for process."""

    @pytest.mark.asyncio
    async def test_process_accepted(self):
        """Test the JSON block is submitted and the hash returned."""
        block = signed_receive_block()
        client = make_client({"hash": block.hash.lower()})

        assert await client.process(block) == block.hash
        payload = sent_payload(client)
        assert payload["json_block"] == "true"
        assert payload["subtype"] == "receive"
        assert payload["block"] == block.to_rpc()

    @pytest.mark.asyncio
    async def test_old_block_is_success(self):
        """Test an already processed block counts as accepted."""
        block = signed_receive_block()
        client = make_client({"error": "Old block"})
        assert await client.process(block) == block.hash

    @pytest.mark.parametrize("reason, error_cls", [
        ("Gap previous block", StaleFrontier),
        ("Fork", StaleFrontier),
        ("Unreceivable", UnreceivablePending),
        ("Block work is insufficient", InsufficientWork),
        ("Bad signature", BlockRejected),
    ])
    @pytest.mark.asyncio
    async def test_rejections_classified(self, reason, error_cls):
        """Test node rejection strings map to exception types."""
        block = signed_receive_block()
        client = make_client({"error": reason})

        with pytest.raises(BlockRejected) as exc:
            await client.process(block)

        assert type(exc.value) is error_cls
        assert exc.value.block_hash == block.hash
        assert exc.value.reason == reason

    @pytest.mark.asyncio
    async def test_missing_hash_is_uncertain(self):
        """Test a response without hash may have been delivered."""
        client = make_client({})
        with pytest.raises(RPCError) as exc:
            await client.process(signed_receive_block())
        assert exc.value.maybe_delivered


class TestClientMetrics:
    """Tests for metrics recording."""

    @pytest.mark.asyncio
    async def test_success_and_error_recorded(self):
        """Test calls are recorded per action and source."""
        metrics = LedgerMetrics()
        client = make_client({"balance": "1", "receivable": "0"}, metrics=metrics)
        await client.account_balance(ADDRESS)
        assert metrics.get_operation_count("account_balance", "test_success") == 1

    @pytest.mark.asyncio
    async def test_transport_failure_recorded(self):
        """Test transport failures are recorded and re-raised."""
        metrics = LedgerMetrics()
        client = make_client(error=RPCError("down"), metrics=metrics)
        with pytest.raises(RPCError):
            await client.account_balance(ADDRESS)
        assert metrics.get_operation_count("account_balance", "failure") == 1


class TestFactories:
    """Tests for client factory functions."""

    def test_create_client(self):
        """Test the primary client carries credentials."""
        client = create_client(LedgerConfig(rpc_url="https://rpc.example", rpc_key="secret"))
        assert client.name == "primary"
        assert client.url == "https://rpc.example"
        assert client.connection.headers["Authorization"] == "secret"

    def test_create_public_clients(self):
        """Test public clients are unauthenticated and named in order."""
        config = LedgerConfig(rpc_key="secret", public_submit_urls=["https://a", "https://b"])
        clients = create_public_clients(config)
        assert [c.name for c in clients] == ["public-1", "public-2"]
        assert all("Authorization" not in c.connection.headers for c in clients)
