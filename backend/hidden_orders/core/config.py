from typing import Dict, List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class NetworkConfig(BaseModel):
    url: str
    chain_id: int
    router_address: str
    name: str


# Both networks run against a forked mainnet, hence chain id 1.
NETWORKS: Dict[str, NetworkConfig] = {
    "localhost": NetworkConfig(
        url="http://127.0.0.1:8545",
        chain_id=1,
        router_address="0x111111125421cA6dc452d289314280a0f8842A65",
        name="localhost",
    ),
    "hardhat": NetworkConfig(
        url="hardhat",
        chain_id=1,
        router_address="0x111111125421cA6dc452d289314280a0f8842A65",
        name="hardhat",
    ),
}


class Settings(BaseSettings):
    PROJECT_NAME: str = "Hidden Orders Maker Service"
    API_V1_STR: str = "/api"

    # Deployment
    PORT: int = 3000
    NETWORK: str = "localhost"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]
    ENABLE_LOGGING: bool = True
    LOG_LEVEL: str = "INFO"

    # Web3 / limit order protocol
    WEB3_PROVIDER_URL: str = "http://127.0.0.1:8545"
    CHAIN_ID: Optional[int] = None
    ROUTER_ADDRESS: Optional[str] = None
    ZK_PREDICATE_ADDRESS: str = ""
    MAKER_PRIVATE_KEY: str = ""

    # ZK toolchain (Node.js + snarkjs + poseidon-lite)
    ZK_TOOLCHAIN_DIR: str = "."
    NODE_BINARY: str = "node"
    SNARKJS_COMMAND: List[str] = ["npx", "snarkjs"]
    CIRCUIT_WASM_PATH: str = "circuits/hidden_params_js/hidden_params.wasm"
    CIRCUIT_ZKEY_PATH: str = "circuits/hidden_params_0001.zkey"
    PROVER_MAX_WORKERS: int = 2
    PROVER_TIMEOUT_SECONDS: Optional[float] = 60.0
    POSEIDON_TIMEOUT_SECONDS: float = 10.0

    # Order catalog
    ORDER_STORAGE_PATH: str = "storage/published_orders.json"
    STORAGE_LOCK_TIMEOUT_SECONDS: float = 5.0
    STORAGE_LOCK_RETRY_INTERVAL: float = 0.1
    STORAGE_LOCK_STALE_SECONDS: float = 30.0

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()


def get_network_config(name: str) -> NetworkConfig:
    """
    Resolve a named network, applying CHAIN_ID / ROUTER_ADDRESS overrides.

    Raises:
        ValueError: If the network name is unknown.
    """
    config = NETWORKS.get(name)
    if config is None:
        raise ValueError(f"Network configuration not found for: {name}")

    overrides = {}
    if settings.CHAIN_ID is not None:
        overrides["chain_id"] = settings.CHAIN_ID
    if settings.ROUTER_ADDRESS:
        overrides["router_address"] = settings.ROUTER_ADDRESS
    return config.model_copy(update=overrides) if overrides else config
