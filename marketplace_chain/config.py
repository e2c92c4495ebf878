from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_NETWORK, NETWORK_CONFIG


BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ABI_PATH = Path(__file__).resolve().parent / "contracts" / "HealthDataMarketplace.json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Health API host")
    port: int = Field(default=8000, description="Health API port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Network
    rpc_url: str = Field(
        default="",
        description="JSON-RPC endpoint URL",
        validation_alias=AliasChoices("sepolia_rpc_url", "rpc_url"),
    )
    network: str = Field(default=DEFAULT_NETWORK, description="Key into NETWORK_CONFIG")
    contract_address: str = Field(default="", description="Deployed marketplace contract address")
    contract_abi_path: Path = Field(
        default=DEFAULT_ABI_PATH,
        description="Contract JSON artifact (object with an 'abi' key, or a bare ABI list)",
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="JSON-RPC request timeout")

    # Retry defaults
    retry_max_attempts: int = Field(default=3, ge=1, description="Attempts per remote operation")
    retry_base_delay_ms: int = Field(default=1000, ge=0, description="Linear backoff step in milliseconds")
    write_results_limit: int = Field(default=1024, ge=1, description="Completed submissions remembered per key")
    write_result_ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="How long a completed submission keeps deduplicating its key",
    )
    submit_lookup_blocks: int = Field(
        default=12,
        ge=0,
        description="Recent blocks searched for a submission whose response was lost",
    )

    # Event polling
    block_poll_interval_seconds: float = Field(default=4.0, gt=0, description="Seconds between block polls")
    max_block_range: int = Field(default=500, ge=1, description="Max blocks covered by one log query")
    log_chain_events: bool = Field(
        default=True,
        description="Install the built-in block and DataPurchased logging listeners",
    )

    # Supervision
    health_check_interval_seconds: float = Field(default=15.0, gt=0, description="Seconds between health checks")
    reconnect_failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive failed health checks before the connection is rebuilt",
    )

    @property
    def network_config(self) -> Dict[str, Any]:
        return NETWORK_CONFIG.get(self.network.upper(), {})

    @property
    def chain_id(self) -> Optional[int]:
        return self.network_config.get("CHAIN_ID")

    def resolve_rpc_url(self) -> Optional[str]:
        """Environment value first, then the network-config table."""
        env_value = (self.rpc_url or "").strip()
        if env_value:
            return env_value
        table_value = (self.network_config.get("RPC_URL") or "").strip()
        return table_value or None

    def retry_policy(self):
        from .core.recovery.strategies import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_ms / 1000.0,
        )


# Entry-point settings instance. Core components take a Settings explicitly.
settings = Settings()
