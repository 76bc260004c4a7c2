# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(...)
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 10

    # -----------------------
    # Inbound webhook auth
    # -----------------------
    API_KEY: str = Field(..., min_length=8)

    # -----------------------
    # Wallet gateway (PatchWallet)
    # -----------------------
    WALLET_API_BASE_URL: str = "https://paymagicapi.com"
    WALLET_CLIENT_ID: str = ""
    WALLET_CLIENT_SECRET: str = ""
    WALLET_HTTP_TIMEOUT_S: float = 100.0
    WALLET_USER_PREFIX: str = "grindery"

    # Treasury identities used as the sender of rewards / receiver of orders
    SOURCE_TG_ID: str = ""
    SOURCE_WALLET_ADDRESS: str = ""

    # -----------------------
    # Token defaults
    # -----------------------
    G1_TOKEN_ADDRESS: str = "0xe36BD65609c08Cd17b53520293523CF4560533d0"
    G1_TOKEN_SYMBOL: str = "G1"
    DEFAULT_CHAIN_ID: str = "eip155:137"
    TOKEN_DECIMALS: int = 18

    # -----------------------
    # Vesting (Hedgey batch planner)
    # -----------------------
    HEDGEY_BATCH_PLANNER_ADDRESS: str = "0x3466EB008EDD8d5052446293D1a7D212cb65C646"
    HEDGEY_VESTING_LOCKER: str = "0x2CDE9919e81b20B4B33DD562a48a84b54C48F00C"
    HEDGEY_LOCKUP_LOCKER: str = "0x1961A23409CA59EEDCA6a99c97E4087DaD752486"
    VESTING_ADMIN_ADDRESS: str = "0x0000000000000000000000000000000000000000"
    VESTING_USE_VESTING_PLANS: bool = False
    TOKEN_LOCK_TERM_S: int = 31536000
    VESTING_START_TS: int = 1704067200

    # -----------------------
    # State machine
    # -----------------------
    PENDING_HASH_TIMEOUT_MINUTES: int = 10

    # -----------------------
    # Notifications (FlowXO relay + Segment)
    # -----------------------
    FLOWXO_WEBHOOK_API_KEY: str = ""
    FLOWXO_NEW_TRANSACTION_WEBHOOK: str = ""
    FLOWXO_NEW_SIGNUP_REWARD_WEBHOOK: str = ""
    FLOWXO_NEW_REFERRAL_REWARD_WEBHOOK: str = ""
    FLOWXO_NEW_LINK_REWARD_WEBHOOK: str = ""
    FLOWXO_NEW_ISOLATED_REWARD_WEBHOOK: str = ""
    FLOWXO_NEW_VESTING_WEBHOOK: str = ""
    FLOWXO_NEW_SWAP_WEBHOOK: str = ""
    NOTIFY_HTTP_TIMEOUT_S: float = 20.0
    NOTIFY_MAX_WORKERS: int = 4

    SEGMENT_KEY: str = ""
    SEGMENT_TRACK_URL: str = "https://api.segment.io/v1/track"
    SEGMENT_IDENTIFY_URL: str = "https://api.segment.io/v1/identify"

    # -----------------------
    # Event worker
    # -----------------------
    WORKER_BATCH_SIZE: int = 50
    WORKER_POLL_SECONDS: int = 5
    WORKER_BASE_BACKOFF_SECONDS: int = 30
    WORKER_MAX_BACKOFF_SECONDS: int = 1200
    # claimed events are invisible to other workers for this long
    WORKER_CLAIM_LEASE_SECONDS: int = 900
    EVENT_DROP_AFTER_ATTEMPTS: int = 2
    EVENT_DROP_AFTER_HOURS: int = 24

    LOG_LEVEL: str = "INFO"


settings = Settings()
