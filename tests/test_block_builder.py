"""
Tests for xnoledger/blockchain/block_builder.py

Tests state block construction, hashing and RPC serialization.
"""

import hashlib

import pytest

from xnoledger.address import decode_address, encode_address
from xnoledger.blockchain.block_builder import (
    BlockBuilder,
    STATE_BLOCK_PREAMBLE,
    hash_block,
)
from xnoledger.config import DEFAULT_REPRESENTATIVE, MAX_BALANCE_RAW, RAW_PER_XNO, ZERO_HASH
from xnoledger.errors import InsufficientBalance, InvalidAmount, LedgerError
from xnoledger.models import AccountState, BlockKind, PendingBlock
from xnoledger.signing import NanoKeyPair


# ============================================================================
# TEST DATA
# ============================================================================

OWNER = NanoKeyPair.from_seed("0" * 64, 0)
OTHER = NanoKeyPair.from_seed("0" * 64, 1)
FRONTIER = "AB" * 32
SOURCE = "CD" * 32


@pytest.fixture
def builder():
    """Block builder with the default representative."""
    return BlockBuilder()


@pytest.fixture
def opened_account():
    """Opened account holding 10 XNO."""
    return AccountState(
        address=OWNER.address(),
        public_key=OWNER.public_key,
        frontier=FRONTIER,
        representative=OTHER.address(),
        balance_raw=10 * RAW_PER_XNO,
    )


@pytest.fixture
def new_account():
    """Never-opened account."""
    return AccountState(address=OWNER.address(), public_key=OWNER.public_key)


@pytest.fixture
def pending():
    """Pending transfer of 2 XNO."""
    return PendingBlock(source_hash=SOURCE, amount_raw=2 * RAW_PER_XNO)


class TestHashBlock:
    """Tests for hash_block."""

    def test_matches_field_encoding(self):
        """Test the hash covers preamble, keys, previous, balance and link."""
        expected = hashlib.blake2b(
            STATE_BLOCK_PREAMBLE
            + bytes.fromhex(OWNER.public_key)
            + bytes.fromhex(FRONTIER)
            + bytes.fromhex(OTHER.public_key)
            + (5).to_bytes(16, "big")
            + bytes.fromhex(SOURCE),
            digest_size=32,
        ).hexdigest().upper()
        assert hash_block(OWNER.address(), FRONTIER, OTHER.address(), 5, SOURCE) == expected

    def test_deterministic(self):
        """Test identical fields yield identical hashes."""
        a = hash_block(OWNER.address(), FRONTIER, OTHER.address(), 5, SOURCE)
        b = hash_block(OWNER.address("xno_"), FRONTIER.lower(), OTHER.address(), 5, SOURCE)
        assert a == b

    def test_balance_changes_hash(self):
        """Test every field contributes to the hash."""
        a = hash_block(OWNER.address(), FRONTIER, OTHER.address(), 5, SOURCE)
        b = hash_block(OWNER.address(), FRONTIER, OTHER.address(), 6, SOURCE)
        assert a != b

    def test_preamble(self):
        """Test the preamble is 32 bytes ending in 6."""
        assert len(STATE_BLOCK_PREAMBLE) == 32
        assert STATE_BLOCK_PREAMBLE[-1] == 6
        assert set(STATE_BLOCK_PREAMBLE[:-1]) == {0}

    def test_rejects_bad_previous(self):
        """Test malformed previous hash is refused."""
        with pytest.raises(LedgerError):
            hash_block(OWNER.address(), "AB", OTHER.address(), 5, SOURCE)


class TestBuildOpen:
    """Tests for open blocks."""

    def test_open_fields(self, builder, pending):
        """Test previous is the zero hash and balance is the pending amount."""
        block = builder.build_open(OWNER.address(), pending)
        assert block.kind == BlockKind.OPEN
        assert block.previous == ZERO_HASH
        assert block.balance_raw == pending.amount_raw
        assert block.link == SOURCE
        assert block.representative == DEFAULT_REPRESENTATIVE

    def test_open_work_root_is_account_key(self, builder, pending):
        """Test open blocks compute work against the public key."""
        block = builder.build_open(OWNER.address(), pending)
        assert block.work_root == OWNER.public_key

    def test_open_custom_representative(self, builder, pending):
        """Test an explicit representative overrides the default."""
        block = builder.build_open(OWNER.address(), pending, representative=OTHER.address())
        assert block.representative == OTHER.address()

    def test_builder_default_representative(self, pending):
        """Test a configured default representative is used."""
        builder = BlockBuilder(default_representative=OTHER.address())
        assert builder.build_open(OWNER.address(), pending).representative == OTHER.address()


class TestBuildReceive:
    """Tests for receive blocks."""

    def test_receive_fields(self, builder, opened_account, pending):
        """Test previous is the frontier and balance is the checked sum."""
        block = builder.build_receive(opened_account, pending)
        assert block.kind == BlockKind.RECEIVE
        assert block.previous == FRONTIER
        assert block.balance_raw == 12 * RAW_PER_XNO
        assert block.link == SOURCE
        assert block.representative == OTHER.address()

    def test_receive_work_root_is_previous(self, builder, opened_account, pending):
        """Test receive blocks compute work against the previous hash."""
        assert builder.build_receive(opened_account, pending).work_root == FRONTIER

    def test_receive_requires_frontier(self, builder, new_account, pending):
        """Test receive blocks cannot be built for unopened accounts."""
        with pytest.raises(LedgerError):
            builder.build_receive(new_account, pending)

    def test_receive_overflow(self, builder, opened_account):
        """Test a balance overflow is a hard error."""
        big = PendingBlock(source_hash=SOURCE, amount_raw=MAX_BALANCE_RAW)
        with pytest.raises(InvalidAmount):
            builder.build_receive(opened_account, big)

    def test_build_incoming_selects_kind(self, builder, new_account, opened_account, pending):
        """Test open for new accounts, receive for opened ones."""
        assert builder.build_incoming(new_account, pending).kind == BlockKind.OPEN
        assert builder.build_incoming(opened_account, pending).kind == BlockKind.RECEIVE


class TestBuildSend:
    """Tests for send blocks."""

    def test_send_fields(self, builder, opened_account):
        """Test balance decreases exactly and link is the destination key."""
        amount = 3 * RAW_PER_XNO + 1
        block = builder.build_send(opened_account, OTHER.address("xno_"), amount)
        assert block.kind == BlockKind.SEND
        assert block.previous == FRONTIER
        assert block.balance_raw == 10 * RAW_PER_XNO - amount
        assert block.link == OTHER.public_key
        assert block.work_root == FRONTIER

    def test_send_entire_balance(self, builder, opened_account):
        """Test sending everything leaves zero."""
        block = builder.build_send(opened_account, OTHER.address(), 10 * RAW_PER_XNO)
        assert block.balance_raw == 0

    def test_send_insufficient_balance(self, builder, opened_account):
        """Test sending more than the balance fails."""
        with pytest.raises(InsufficientBalance):
            builder.build_send(opened_account, OTHER.address(), 10 * RAW_PER_XNO + 1)

    def test_send_non_positive(self, builder, opened_account):
        """Test zero and negative amounts are refused."""
        with pytest.raises(InvalidAmount):
            builder.build_send(opened_account, OTHER.address(), 0)

    def test_send_requires_frontier(self, builder, new_account):
        """Test unopened accounts cannot send."""
        with pytest.raises(LedgerError):
            builder.build_send(new_account, OTHER.address(), 1)


class TestStateBlock:
    """Tests for StateBlock behaviour."""

    def test_immutable(self, builder, opened_account, pending):
        """Test blocks cannot be mutated after construction."""
        block = builder.build_receive(opened_account, pending)
        with pytest.raises(Exception):
            block.balance_raw = 0

    def test_with_work_and_signature(self, builder, opened_account, pending):
        """Test attaching work and signature returns new blocks with the same hash."""
        block = builder.build_receive(opened_account, pending)
        signed = block.with_work("0123456789ABCDEF").with_signature(OWNER.sign(block.hash))
        assert block.work is None
        assert signed.work == "0123456789abcdef"
        assert signed.hash == block.hash
        assert signed.is_complete
        assert OWNER.verify(signed.hash, signed.signature)

    def test_to_rpc_requires_work_and_signature(self, builder, opened_account, pending):
        """Test incomplete blocks cannot be serialized for submission."""
        with pytest.raises(LedgerError):
            builder.build_receive(opened_account, pending).to_rpc()

    def test_to_rpc(self, builder, opened_account):
        """Test RPC serialization uses nano_ addresses and string balances."""
        account = AccountState(**{**opened_account.__dict__, "address": OWNER.address("xno_")})
        block = builder.build_send(account, OTHER.address(), RAW_PER_XNO)
        signed = block.with_work("0" * 16).with_signature(OWNER.sign(block.hash))
        rpc = signed.to_rpc()
        assert rpc["type"] == "state"
        assert rpc["account"] == OWNER.address()
        assert rpc["balance"] == str(9 * RAW_PER_XNO)
        assert rpc["link"] == OTHER.public_key
        assert rpc["link_as_account"] == encode_address(OTHER.public_key)
        assert decode_address(rpc["representative"]) == OTHER.public_key

    def test_to_dict(self, builder, opened_account, pending):
        """Test dictionary export."""
        data = builder.build_receive(opened_account, pending).to_dict()
        assert data["kind"] == "receive"
        assert data["balance_raw"] == str(12 * RAW_PER_XNO)
