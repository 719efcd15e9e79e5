"""
xnoledger/rpc - JSON-RPC client for the Nano ledger service.

Provides account queries, pending block discovery, work generation and
block submission over HTTPS.
"""

from .client import NanoRPCClient, create_client, create_public_clients
from .connection import RPCConnection

__all__ = [
    "NanoRPCClient",
    "RPCConnection",
    "create_client",
    "create_public_clients",
]
