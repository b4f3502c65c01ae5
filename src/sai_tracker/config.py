"""Settings (pydantic-settings, loaded from env vars)."""

from pydantic import BaseModel
from pydantic_settings import BaseSettings

NETWORKS = ("mainnet", "testnet")


class UnknownNetworkError(ValueError):
    pass


class NetworkConfig(BaseModel):
    name: str
    graphql_url: str
    rpc_url: str
    explorer_url: str
    perp_contract: str = ""
    log_topics: list[str] = []


class Settings(BaseSettings):
    # --- Mainnet ---
    MAINNET_GRAPHQL_URL: str = "https://sai-keeper.nibiru.fi/query"
    MAINNET_RPC_URL: str = "https://evm-rpc.nibiru.fi"
    MAINNET_EXPLORER_URL: str = "https://nibiscan.io"
    MAINNET_PERP_CONTRACT: str = ""
    MAINNET_LOG_TOPICS: list[str] = []

    # --- Testnet ---
    TESTNET_GRAPHQL_URL: str = "https://sai-keeper.testnet-2.nibiru.fi/query"
    TESTNET_RPC_URL: str = "https://evm-rpc.testnet-2.nibiru.fi"
    TESTNET_EXPLORER_URL: str = "https://testnet.nibiscan.io"
    TESTNET_PERP_CONTRACT: str = ""
    TESTNET_LOG_TOPICS: list[str] = []

    # --- Addresses ---
    BECH32_PREFIX: str = "nibi"

    # --- Log scan ---
    LOG_SCAN_ENABLED: bool = True
    LOG_SCAN_LOOKBACK_BLOCKS: int = 45_000
    LOG_SCAN_CHUNK_SIZE: int = 9_000  # RPC hard limit is 10k blocks per eth_getLogs
    RECEIPT_BATCH_SIZE: int = 10

    # --- Fee resolver ---
    FEE_BATCH_SIZE: int = 10
    FEE_REQUEST_TIMEOUT_SECONDS: float = 10.0
    FEE_LOG_HEADER_BYTES: int = 64

    # --- Transport ---
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # --- Pricing ---
    STABLE_COLLATERAL_SYMBOLS: list[str] = ["USDC", "USDT", "USD"]
    DEFAULT_COLLATERAL_SYMBOL: str = "USDC"
    PAIR_INFERENCE_MAX_RATIO: float = 5.0

    # --- Queries ---
    DEFAULT_TRADES_LIMIT: int = 100
    HISTORY_LIMIT_MULTIPLIER: int = 2
    POSITIONS_LIMIT: int = 200

    # --- Global volume cache ---
    VOLUME_REFRESH_HOURS: float = 6.0
    GLOBAL_HISTORY_PAGE_SIZE: int = 1000
    GLOBAL_HISTORY_MAX_PAGES: int = 50

    # --- Server ---
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    model_config = {"env_prefix": "", "case_sensitive": True}

    def network(self, name: str) -> NetworkConfig:
        """Resolve the upstream endpoint set for a network selector."""
        if name == "mainnet":
            return NetworkConfig(
                name=name,
                graphql_url=self.MAINNET_GRAPHQL_URL,
                rpc_url=self.MAINNET_RPC_URL,
                explorer_url=self.MAINNET_EXPLORER_URL,
                perp_contract=self.MAINNET_PERP_CONTRACT,
                log_topics=self.MAINNET_LOG_TOPICS,
            )
        if name == "testnet":
            return NetworkConfig(
                name=name,
                graphql_url=self.TESTNET_GRAPHQL_URL,
                rpc_url=self.TESTNET_RPC_URL,
                explorer_url=self.TESTNET_EXPLORER_URL,
                perp_contract=self.TESTNET_PERP_CONTRACT,
                log_topics=self.TESTNET_LOG_TOPICS,
            )
        raise UnknownNetworkError(f"Invalid network '{name}'. Use 'mainnet' or 'testnet'")
