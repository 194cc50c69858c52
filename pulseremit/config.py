"""
Configuration for the vault gateway, executor and scheduler.
"""
import os
import urllib.parse
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .utils import is_valid_address

DEFAULT_EXPLORER_URL = "https://celo-sepolia.blockscout.com"

_TRUE_VALUES = ("1", "true", "yes", "on")


def validate_rpc_url(url: str, insecure_allowed: bool = False) -> None:
    """
    Require https for RPC endpoints unless the host is local.

    Args:
        url: RPC endpoint URL
        insecure_allowed: Permit plain http for development

    Raises:
        ValueError: If the URL is malformed or insecure
    """
    parsed = urllib.parse.urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Invalid RPC URL '{url}'")
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme != "https" and not is_local and not insecure_allowed:
        raise ValueError(
            f"rpc_url must use https:// for security (got: {parsed.scheme}://). "
            "Set PULSE_INSECURE_RPC=1 to allow HTTP for development."
        )


@dataclass(frozen=True)
class VaultConfig:
    """
    Immutable connection and account settings.

    Built once at startup and handed to the ChainGateway; nothing reads
    these values from globals.
    """
    rpc_url: str
    vault_address: str
    agent_id: int
    agent_private_key: Optional[str] = field(default=None, repr=False)
    chain_id: Optional[int] = None
    identity_registry_address: Optional[str] = None
    reputation_registry_address: Optional[str] = None
    explorer_url: str = DEFAULT_EXPLORER_URL
    receipt_timeout: float = 120.0
    poll_interval: float = 1.0
    retry_count: int = 3
    http_timeout: int = 30
    deadline_window: int = 3600
    require_agent_verification: bool = False
    scheduler_interval: int = 3600
    insecure_rpc: bool = False

    def __post_init__(self):
        validate_rpc_url(self.rpc_url, self.insecure_rpc)
        for name in ("vault_address", "identity_registry_address", "reputation_registry_address"):
            value = getattr(self, name)
            if value is not None and not is_valid_address(value):
                raise ValueError(f"{name} is not a valid address: {value!r}")
        if self.agent_private_key is not None and not self.agent_private_key.startswith("0x"):
            raise ValueError("agent_private_key must be a 0x-prefixed hex string")
        if self.agent_id < 0:
            raise ValueError("agent_id must be non-negative")
        if self.scheduler_interval <= 0:
            raise ValueError("scheduler_interval must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VaultConfig":
        """
        Build a config from PULSE_* environment variables.

        Raises:
            ValueError: If a required variable is missing or a value is invalid
        """
        env = os.environ if environ is None else environ

        def required(name: str) -> str:
            value = env.get(name)
            if not value:
                raise ValueError(f"Missing required environment variable {name}")
            return value

        def optional_int(name: str) -> Optional[int]:
            value = env.get(name)
            return int(value) if value else None

        return cls(
            rpc_url=required("PULSE_RPC_URL"),
            vault_address=required("PULSE_VAULT_ADDRESS"),
            agent_private_key=env.get("PULSE_AGENT_PRIVATE_KEY") or None,
            agent_id=int(required("PULSE_AGENT_ID")),
            chain_id=optional_int("PULSE_CHAIN_ID"),
            identity_registry_address=env.get("PULSE_IDENTITY_REGISTRY") or None,
            reputation_registry_address=env.get("PULSE_REPUTATION_REGISTRY") or None,
            explorer_url=env.get("PULSE_EXPLORER_URL", DEFAULT_EXPLORER_URL),
            receipt_timeout=float(env.get("PULSE_RECEIPT_TIMEOUT", "120")),
            deadline_window=int(env.get("PULSE_DEADLINE_WINDOW", "3600")),
            require_agent_verification=env.get("PULSE_REQUIRE_AGENT_VERIFICATION", "").lower() in _TRUE_VALUES,
            scheduler_interval=int(env.get("PULSE_SCHEDULER_INTERVAL", "3600")),
            insecure_rpc=env.get("PULSE_INSECURE_RPC") == "1",
        )


def store_path_from_env(environ: Optional[Mapping[str, str]] = None) -> str:
    """Location of the JSON record store (PULSE_STORE_PATH or ~/.pulseremit/store.json)."""
    env = os.environ if environ is None else environ
    return env.get("PULSE_STORE_PATH", os.path.expanduser("~/.pulseremit/store.json"))
