from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Runtime
    ENV: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Datastores
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    ENABLE_REDIS: bool = Field(default=False)

    # Observability
    LOKI_URL: str = Field(default="http://localhost:3100")
    ENABLE_LOKI: bool = Field(default=False)

    # Avalanche C-Chain
    AVALANCHE_RPC_URL: str = Field(default="https://api.avax.network/ext/bc/C/rpc")

    # Price APIs
    COINGECKO_BASE_URL: str = Field(default="https://api.coingecko.com/api/v3")
    COINAPI_BASE_URL: str = Field(default="https://rest.coinapi.io/v1")
    COINAPI_KEY: str | None = None

    # DefiLlama
    DEFILLAMA_YIELDS_URL: str = Field(default="https://yields.llama.fi/pools")
    DEFILLAMA_API_URL: str = Field(default="https://api.llama.fi")

    # Protocol APIs
    GOGOPOOL_API_URL: str = Field(default="https://api.gogopool.com")
    AVANT_API_URL: str = Field(default="https://app.avantprotocol.com/api")
    PANGOLIN_API_URL: str = Field(default="https://api.pangolin.exchange")

    # The Graph gateway
    THEGRAPH_API_KEY: str | None = None
    BENQI_SUBGRAPH_ID: str = Field(default="EcNHwEGXq3KW1vCbHHj1iwvtf62ae5kxzEQhKtRqPygt")
    PANGOLIN_SUBGRAPH_ID: str = Field(default="7PRKughAkeESafrGZ8A2x1YsbNMQnFbxQ1bpeNjktwZk")

    # Refresh / caching
    REFRESH_INTERVAL_SECONDS: int = Field(default=15)
    PRICE_CACHE_TTL_SECONDS: int = Field(default=30)
    DEFILLAMA_CACHE_TTL_SECONDS: int = Field(default=300)
    HTTP_TIMEOUT_SECONDS: float = Field(default=15.0)

    # Monitoring
    MAX_ALERTS: int = Field(default=50)
    MIN_MARKET_TVL_USD: float = Field(default=100_000.0)

    def subgraph_url(self, subgraph_id: str | None) -> str | None:
        if not self.THEGRAPH_API_KEY or not subgraph_id:
            return None
        return f"https://gateway.thegraph.com/api/{self.THEGRAPH_API_KEY}/subgraphs/id/{subgraph_id}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
