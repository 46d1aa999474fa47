"""Environment-driven settings. Read once at import."""
import os
from typing import List


def _csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


SPONSOR_PRIVATE_KEY = os.getenv("SPONSOR_PRIVATE_KEY", "")
PORT = int(os.getenv("PORT", "3000"))

CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS", "0xD172eE7F44B1d9e2C2445E89E736B980DA1f1205")
RPC_URLS = _csv(os.getenv(
    "RPC_URLS",
    "https://mainnet.base.org,https://base.llamarpc.com,https://1rpc.io/base,https://base.publicnode.com",
))
NETWORK_NAME = os.getenv("NETWORK_NAME", "Base Mainnet")
EXPLORER_TX_URL = os.getenv("EXPLORER_TX_URL", "https://basescan.org/tx/")
DIRECTORY_URL = os.getenv("DIRECTORY_URL", "https://ts00.github.io/agent-directory/")

# Capability index storage: "json" (single document) or "sql"
CAPABILITY_STORE = os.getenv("CAPABILITY_STORE", "json").lower()
CAPABILITIES_FILE = os.getenv("CAPABILITIES_FILE", os.path.join("data", "capabilities.json"))
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agent_directory.db")

# Platforms whose inconclusive probes reject instead of passing unverified
FAIL_CLOSED_PLATFORMS = [p.lower() for p in _csv(os.getenv("FAIL_CLOSED_PLATFORMS", ""))]

REGISTRATION_COOLDOWN_SECONDS = float(os.getenv("REGISTRATION_COOLDOWN_SECONDS", "60"))
VERIFY_TIMEOUT_SECONDS = float(os.getenv("VERIFY_TIMEOUT_SECONDS", "10"))
CONFIRM_TIMEOUT_SECONDS = float(os.getenv("CONFIRM_TIMEOUT_SECONDS", "120"))
GAS_BUFFER_ETH = os.getenv("GAS_BUFFER_ETH", "0.0005")
REGISTER_GAS_LIMIT = int(os.getenv("REGISTER_GAS_LIMIT", "300000"))

MAX_LIST_LIMIT = 500
DEFAULT_LIST_LIMIT = 100


def explorer_url(tx_hash: str) -> str:
    return f"{EXPLORER_TX_URL}{tx_hash}"
