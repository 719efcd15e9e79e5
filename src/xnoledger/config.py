"""
xnoledger/config.py

Configuration constants and data classes for xnoledger.

Every component receives a LedgerConfig explicitly; nothing in the package
holds credentials at module level.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import os


# ============================================================================
# LEDGER CONSTANTS
# ============================================================================

# 1 XNO = 10^30 raw
RAW_PER_XNO = 10 ** 30
DISPLAY_DECIMALS = 6
MAX_BALANCE_RAW = 2 ** 128 - 1

# Proof-of-work thresholds (epoch 2)
SEND_DIFFICULTY = "fffffff800000000"
RECEIVE_DIFFICULTY = "fffffe0000000000"

ZERO_HASH = "0" * 64

DEFAULT_REPRESENTATIVE = (
    "nano_3rropjiqfxpmrrkooej4qtmm1pueu36f9ghinpho4esfdor8785a455d16nf"
)

# Remote services
DEFAULT_RPC_URL = "https://rpc.nano.to/"
PUBLIC_NODE_URLS: List[str] = [
    "https://proxy.nanos.cc/proxy/",
    "https://node.nanocrawler.cc/proxy",
]

# Reward pool defaults
MAX_UPLOADS_PER_WALLET = 5
MAX_REWARD_PERCENTAGE = 5           # per content item, of the like pool
UPLOAD_POOL_PERCENTAGE = 70
LIKE_POOL_PERCENTAGE = 30
DAILY_DISTRIBUTION_XNO = "0.1"
CREATOR_UPVOTE_SHARE = 80           # remaining share goes to the pool


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class WorkProviderConfig:
    """One entry in the proof-of-work provider chain."""
    name: str
    url: str
    api_key: Optional[str] = None
    gpu_key: Optional[str] = None
    difficulty: Optional[str] = None  # None = use the requested threshold
    timeout: float = 30.0

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = self.api_key
        if self.gpu_key:
            headers["X-GPU-Key"] = self.gpu_key
        return headers

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "authenticated": bool(self.api_key),
            "difficulty": self.difficulty,
            "timeout": self.timeout,
        }


@dataclass
class LedgerConfig:
    """
    Client configuration for the remote ledger service.

    Attributes:
        rpc_url: Primary JSON-RPC endpoint
        rpc_key: Credential sent as the Authorization header
        gpu_key: Optional credential for GPU work generation
        default_representative: Representative used for opening blocks
        open_difficulty: Work threshold for opening blocks. None means the
            receive threshold.
        work_providers: Ordered proof-of-work providers. Empty means the
            default chain built by default_work_providers().
        public_submit_urls: Unauthenticated endpoints tried for block
            submission when the primary endpoint is unreachable
        max_block_attempts: Attempts per block before giving up on it
    """
    rpc_url: str = DEFAULT_RPC_URL
    rpc_key: Optional[str] = None
    gpu_key: Optional[str] = None
    default_representative: str = DEFAULT_REPRESENTATIVE

    send_difficulty: str = SEND_DIFFICULTY
    receive_difficulty: str = RECEIVE_DIFFICULTY
    open_difficulty: Optional[str] = None

    work_providers: List[WorkProviderConfig] = field(default_factory=list)
    public_submit_urls: List[str] = field(
        default_factory=lambda: list(PUBLIC_NODE_URLS)
    )

    # Retries
    max_block_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    # Timeouts (seconds)
    request_timeout: float = 30.0
    operation_timeout: float = 120.0
    batch_timeout: float = 600.0

    pending_count: int = 10
    history_count: int = 20

    # Circuit breaker for work providers
    circuit_failure_threshold: int = 5
    circuit_timeout_seconds: float = 60.0

    # Reward pool account
    pool_address: Optional[str] = None
    pool_secret_key: Optional[str] = None

    @property
    def effective_open_difficulty(self) -> str:
        return self.open_difficulty or self.receive_difficulty

    def auth_headers(self) -> Dict[str, str]:
        """Headers for authenticated requests to the primary endpoint."""
        headers = {"Content-Type": "application/json"}
        if self.rpc_key:
            headers["Authorization"] = self.rpc_key
        return headers

    def default_work_providers(self) -> List[WorkProviderConfig]:
        """
        Build the default work provider chain.

        Order: primary endpoint at the send threshold, primary endpoint at
        the requested (possibly lower) threshold, then each public node.
        """
        providers = [
            WorkProviderConfig(
                name="primary",
                url=self.rpc_url,
                api_key=self.rpc_key,
                gpu_key=self.gpu_key,
                difficulty=self.send_difficulty,
                timeout=self.request_timeout,
            ),
            WorkProviderConfig(
                name="primary-low",
                url=self.rpc_url,
                api_key=self.rpc_key,
                gpu_key=self.gpu_key,
                difficulty=None,
                timeout=self.request_timeout,
            ),
        ]
        for i, url in enumerate(self.public_submit_urls):
            providers.append(WorkProviderConfig(
                name=f"public-{i + 1}",
                url=url,
                timeout=self.request_timeout,
            ))
        return providers

    def get_work_providers(self) -> List[WorkProviderConfig]:
        return list(self.work_providers) or self.default_work_providers()

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "LedgerConfig":
        """
        Build a configuration from environment variables.

        Recognized: XNO_RPC_URL (or RPC_URL), RPC_KEY, GPU_KEY,
        XNO_DEFAULT_REPRESENTATIVE, XNO_OPEN_DIFFICULTY,
        XNO_MAX_BLOCK_ATTEMPTS, XNO_OPERATION_TIMEOUT, XNO_BATCH_TIMEOUT,
        PUBLIC_POOL_ADDRESS, POOL_PRIVATE_KEY.
        """
        env = os.environ if environ is None else environ
        config = cls(
            rpc_url=env.get("XNO_RPC_URL") or env.get("RPC_URL") or DEFAULT_RPC_URL,
            rpc_key=env.get("RPC_KEY") or None,
            gpu_key=env.get("GPU_KEY") or None,
            default_representative=(
                env.get("XNO_DEFAULT_REPRESENTATIVE") or DEFAULT_REPRESENTATIVE
            ),
            open_difficulty=env.get("XNO_OPEN_DIFFICULTY") or None,
            pool_address=env.get("PUBLIC_POOL_ADDRESS") or None,
            pool_secret_key=env.get("POOL_PRIVATE_KEY") or None,
        )
        if env.get("XNO_MAX_BLOCK_ATTEMPTS"):
            config.max_block_attempts = int(env["XNO_MAX_BLOCK_ATTEMPTS"])
        if env.get("XNO_OPERATION_TIMEOUT"):
            config.operation_timeout = float(env["XNO_OPERATION_TIMEOUT"])
        if env.get("XNO_BATCH_TIMEOUT"):
            config.batch_timeout = float(env["XNO_BATCH_TIMEOUT"])
        return config

    def to_dict(self) -> dict:
        # Credentials are reported as present/absent only
        return {
            "rpc_url": self.rpc_url,
            "has_rpc_key": bool(self.rpc_key),
            "has_gpu_key": bool(self.gpu_key),
            "default_representative": self.default_representative,
            "send_difficulty": self.send_difficulty,
            "receive_difficulty": self.receive_difficulty,
            "open_difficulty": self.effective_open_difficulty,
            "work_providers": [p.to_dict() for p in self.get_work_providers()],
            "max_block_attempts": self.max_block_attempts,
            "operation_timeout": self.operation_timeout,
            "batch_timeout": self.batch_timeout,
        }
