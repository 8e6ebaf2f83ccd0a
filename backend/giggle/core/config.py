"""Application configuration settings."""
from __future__ import annotations
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Giggle Pay"
    DEBUG: bool = False
    VERSION: str = "1.0.0"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./giggle.db"

    # Redis (optional – pending actions fall back to in-memory)
    REDIS_URL: str = ""

    # Twilio WhatsApp
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_WHATSAPP_NUMBER: str = "whatsapp:+14155238886"
    TWILIO_VERIFY_SIGNATURES: bool = False

    # Chain (Ethereum Sepolia)
    CHAIN_ID: int = 11155111
    CHAIN_NAME: str = "Ethereum Sepolia"
    RPC_URL: str = "https://ethereum-sepolia-rpc.publicnode.com"
    PYUSD_ADDRESS: str = ZERO_ADDRESS
    EXPLORER_URL: str = "https://eth-sepolia.blockscout.com"
    MIN_GAS_BALANCE: str = "0.001"
    ENCRYPTION_KEY: str = "dev_key_32_bytes_long_minimum!"

    # Gift coupons
    GIFT_COUPON_CONTRACT_ADDRESS: str = ""
    PINATA_JWT: str = ""
    PINATA_GATEWAY: str = ""

    # Pyth price feeds
    PYTH_ENDPOINT: str = "https://hermes.pyth.network"

    # LLM (OpenAI-compatible chat completions)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 10.0

    # Conversation
    PENDING_ACTION_TTL_SECONDS: int = 300
    PENDING_SWEEP_INTERVAL_SECONDS: int = 30
    SCHEDULER_INTERVAL_SECONDS: int = 60
    DEFAULT_DAILY_LIMIT: float = 100.0
    DEFAULT_NETWORK: str = "sepolia"
    DEFAULT_TOKEN: str = "PYUSD"

    # PIN hashing
    PIN_ITERATIONS: int = 100_000
    PIN_KEY_LENGTH: int = 64

    @property
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)

    @property
    def llm_configured(self) -> bool:
        key = self.LLM_API_KEY
        return bool(key) and len(key) > 20 and "your_" not in key

    @property
    def token_configured(self) -> bool:
        return bool(self.PYUSD_ADDRESS) and self.PYUSD_ADDRESS != ZERO_ADDRESS

    @property
    def coupons_configured(self) -> bool:
        return bool(self.GIFT_COUPON_CONTRACT_ADDRESS)

    @property
    def pinata_configured(self) -> bool:
        return bool(self.PINATA_JWT)


@lru_cache
def get_settings() -> Settings:
    return Settings()
