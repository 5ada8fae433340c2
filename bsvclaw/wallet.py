"""
Agent wallet: a local keypair kept in a JSON file.

    {"wif": "...", "address": "1...", "createdAt": "2026-..."}

The agent creates its wallet on first run. The bridge's sender wallet is
only ever read. Key material is read-only after load.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

from bsvclaw.errors import WalletError
from bsvclaw.logging_config import get_logger
from bsvclaw.schema import utc_now

logger = get_logger(__name__)


def generate_keypair(network: str = "main"):
    """Generate a new random key. Returns a bsv PrivateKey."""
    from bsv import PrivateKey
    if network == "main":
        return PrivateKey()
    from bsv.constants import Network
    return PrivateKey(network=Network.TESTNET)


class AgentWallet:
    """Address + WIF for one agent (or funder). The signing key is built lazily."""

    def __init__(self, wif: str, address: str, created_at: Optional[str] = None):
        self.wif = wif
        self.address = address
        self.created_at = created_at or utc_now()
        self._private_key: Any = None

    @property
    def private_key(self):
        """bsv PrivateKey for this wallet (only needed when signing)."""
        if self._private_key is None:
            from bsv import PrivateKey
            try:
                self._private_key = PrivateKey(self.wif)
            except Exception as e:
                raise WalletError(f"Invalid WIF for wallet {self.address}: {e}") from e
        return self._private_key

    def to_dict(self) -> dict:
        return {"wif": self.wif, "address": self.address, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, data: dict) -> "AgentWallet":
        try:
            return cls(wif=data["wif"], address=data["address"], created_at=data.get("createdAt"))
        except (KeyError, TypeError) as e:
            raise WalletError(f"Wallet file is missing field: {e}") from e

    @classmethod
    def load(cls, path: Path) -> "AgentWallet":
        """Read an existing wallet file. Raises WalletError if absent or unreadable."""
        if not path.exists():
            raise WalletError(f"Wallet not found: {path}", {"path": str(path)})
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise WalletError(f"Cannot read wallet {path}: {e}", {"path": str(path)}) from e
        return cls.from_dict(data)

    @classmethod
    def load_or_create(cls, path: Path, network: str = "main") -> "AgentWallet":
        """Load the wallet at `path`, generating and saving a new key on first run."""
        if path.exists():
            return cls.load(path)
        key = generate_keypair(network)
        wallet = cls(wif=key.wif(), address=key.address())
        wallet._private_key = key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(wallet.to_dict(), indent=2), encoding="utf-8")
        try:
            os.chmod(path, 0o600)
        except OSError:
            logger.warning(f"Could not restrict permissions on {path}")
        logger.info(f"Created new wallet {wallet.address} at {path}")
        return wallet

    def __repr__(self) -> str:
        return f"<AgentWallet {self.address}>"
