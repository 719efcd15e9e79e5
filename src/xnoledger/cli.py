"""
xnoledger/cli.py

Command line interface.

Usage:
    xnoledger generate --count 2
    xnoledger balance nano_1abc...
    XNO_SECRET_KEY=... xnoledger receive nano_1abc...
    XNO_SECRET_KEY=... xnoledger send nano_1abc... nano_3def... 0.25

Configuration comes from the environment (XNO_RPC_URL, RPC_KEY, GPU_KEY,
...) with --rpc-url overriding the endpoint.
"""

import asyncio
import json
import logging
import re

import click

from .address import decode_address, encode_address, PREFIXES
from .blockchain.ledger_client import LedgerClient
from .blockchain.pool_wallet import split_upvote
from .config import LedgerConfig
from .errors import LedgerError
from .signing import NanoKeyPair
from .units import raw_to_xno, xno_to_raw

logger = logging.getLogger("xnoledger.cli")

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2))


def _run(config: LedgerConfig, operation):
    """Run `operation(client)` on a fresh LedgerClient and close it."""
    async def runner():
        async with LedgerClient(config) as client:
            return await operation(client)
    try:
        return asyncio.run(runner())
    except LedgerError as e:
        raise click.ClickException(str(e))


secret_key_option = click.option(
    "--secret-key",
    envvar="XNO_SECRET_KEY",
    required=True,
    help="Account secret key (64 hex characters). Read from XNO_SECRET_KEY if unset.",
)


@click.group()
@click.option("--rpc-url", default=None, help="RPC endpoint (overrides XNO_RPC_URL)")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, rpc_url, verbose):
    """Nano/XNO ledger client."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )
    config = LedgerConfig.from_env()
    if rpc_url:
        config.rpc_url = rpc_url
    ctx.obj = config


@main.command()
@click.option("--seed", default=None, help="Wallet seed (64 hex). Random if omitted.")
@click.option("--index", default=0, show_default=True, help="First account index")
@click.option("--count", default=1, show_default=True, help="Number of accounts")
def generate(seed, index, count):
    """Generate accounts from a seed."""
    try:
        seed = seed or NanoKeyPair.generate_seed()
        accounts = []
        for i in range(index, index + count):
            keypair = NanoKeyPair.from_seed(seed, i)
            accounts.append({
                "index": i,
                "address": keypair.address(),
                "public_key": keypair.public_key,
                "secret_key": keypair.secret_key,
            })
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo("Store the seed and secret keys securely; they control the funds.", err=True)
    _echo_json({"seed": seed.upper(), "accounts": accounts})


@main.command()
@click.argument("value")
@click.option("--prefix", type=click.Choice(PREFIXES), default="nano_", show_default=True)
def address(value, prefix):
    """Encode a public key, or decode and validate an address."""
    try:
        if _HEX_KEY.match(value):
            _echo_json({"public_key": value.upper(), "address": encode_address(value, prefix)})
        else:
            public_key = decode_address(value)
            _echo_json({
                "address": value,
                "public_key": public_key,
                "normalized": encode_address(public_key, prefix),
            })
    except LedgerError as e:
        raise click.ClickException(str(e))


@main.command()
@click.argument("account")
@click.pass_obj
def balance(config, account):
    """Show balance and receivable amount of an account."""
    info = _run(config, lambda client: client.get_wallet_info(account))
    if not info.valid:
        raise click.ClickException(f"Invalid address: {account}")
    _echo_json(info.to_dict())


@main.command()
@click.argument("account")
@click.option("--count", default=None, type=int, help="Maximum blocks to list")
@click.pass_obj
def pending(config, account, count):
    """List pending blocks of an account."""
    blocks = _run(config, lambda client: client.get_pending(account, count))
    _echo_json([
        dict(block.to_dict(), amount=raw_to_xno(block.amount_raw)) for block in blocks
    ])


@main.command()
@click.argument("account")
@secret_key_option
@click.option("--count", default=None, type=int, help="Pending blocks listed per request")
@click.pass_obj
def receive(config, account, secret_key, count):
    """Receive all pending blocks into an account."""
    summary = _run(
        config, lambda client: client.receive_all_pending(account, secret_key, count)
    )
    _echo_json(summary.to_dict())
    if summary.failed_count:
        raise SystemExit(1)


@main.command()
@click.argument("source")
@click.argument("destination")
@click.argument("amount")
@secret_key_option
@click.pass_obj
def send(config, source, destination, amount, secret_key):
    """Send AMOUNT XNO from SOURCE to DESTINATION."""
    result = _run(
        config, lambda client: client.send(source, secret_key, destination, amount)
    )
    _echo_json(result.to_dict())


@main.command("rewards-split")
@click.argument("amount")
@click.option("--creator-percentage", default=80, show_default=True,
              help="Share of the upvote paid to the creator")
def rewards_split(amount, creator_percentage):
    """Show how an upvote payment of AMOUNT XNO is split."""
    try:
        creator, pool = split_upvote(xno_to_raw(amount), creator_percentage)
    except LedgerError as e:
        raise click.ClickException(str(e))
    _echo_json({
        "creator": raw_to_xno(creator),
        "pool": raw_to_xno(pool),
        "creator_raw": str(creator),
        "pool_raw": str(pool),
    })


if __name__ == "__main__":
    main()
