"""
Configuration Management for StableFlow

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SolanaSettings(BaseSettings):
    """Solana JSON-RPC configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SOLANA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    use_devnet: bool = Field(
        default=True,
        description="Query devnet instead of mainnet-beta"
    )
    mainnet_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="Mainnet-beta RPC endpoint"
    )
    devnet_rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        description="Devnet RPC endpoint"
    )
    usdc_mint_mainnet: str = Field(
        default="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        description="USDC mint address on mainnet-beta"
    )
    usdc_mint_devnet: str = Field(
        default="4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
        description="USDC-Dev mint address on devnet"
    )

    # Every RPC call carries an explicit (connect, read) timeout
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="TCP connect timeout for RPC calls"
    )
    read_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Read timeout for RPC calls"
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Size of the background pool running RPC calls"
    )

    @property
    def rpc_url(self) -> str:
        return self.devnet_rpc_url if self.use_devnet else self.mainnet_rpc_url

    @property
    def usdc_mint(self) -> str:
        return self.usdc_mint_devnet if self.use_devnet else self.usdc_mint_mainnet

    @property
    def cluster(self) -> str:
        return "devnet" if self.use_devnet else "mainnet-beta"

    @property
    def timeout(self) -> tuple[float, float]:
        """(connect, read) tuple in the form requests expects."""
        return (self.connect_timeout_seconds, self.read_timeout_seconds)


class FirebaseSettings(BaseSettings):
    """Firebase Realtime Database (remote store) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIREBASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Firebase service account credentials JSON"
    )
    database_url: str = Field(
        ...,
        description="Realtime Database URL, e.g. https://<project>.firebaseio.com"
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Size of the background pool running store calls"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Firebase credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class CloudinarySettings(BaseSettings):
    """Cloudinary receipt storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="stableflow",
        description="Root folder receipts are uploaded under"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_name: str = Field(
        default="StableFlow",
        description="Label shown by wallets on payment requests"
    )
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Claim limits
    max_claim_amount: float = Field(
        default=100000.0,
        gt=0,
        description="Largest amount (USDC) a single claim may request"
    )

    # Receipt upload limits
    max_receipt_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt upload size in MB"
    )

    @property
    def max_receipt_size_bytes(self) -> int:
        """Get max receipt size in bytes."""
        return self.max_receipt_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so a partially configured
    # environment (e.g. no Cloudinary) still works

    @property
    def solana(self) -> SolanaSettings:
        return SolanaSettings()

    @property
    def firebase(self) -> FirebaseSettings:
        return FirebaseSettings()

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("solana", "firebase", "cloudinary", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
