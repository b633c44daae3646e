"""Defaults for multisend, overridable through MULTISEND_* environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


# Network used when neither --network nor MULTISEND_NETWORK is given
DEFAULT_NETWORK = "test"

# On-disk wallet directory the source keys are loaded into
DEFAULT_WALLET_PATH = "./sdk-wallet"

# Maximum transfers per batch extrinsic.
# utility.batch has no hard limit, but larger batches consume more weight.
MAX_BATCH_SIZE = 200

# Minimum transfer amount in TAO (existential deposit protection)
MIN_TRANSFER_TAO = 0.0005  # 500,000 RAO

# Wallet name template, one wallet per source key
KEY_NAME_FORMAT = "key-{}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MULTISEND_", env_file=".env", extra="ignore"
    )

    network: str = DEFAULT_NETWORK
    wallet_path: str = DEFAULT_WALLET_PATH
    max_batch_size: int = MAX_BATCH_SIZE
    min_transfer_tao: float = MIN_TRANSFER_TAO


settings = Settings()
