from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Vaultix"
    # Application settings
    PORT: int = 8000
    HOST: str = "127.0.0.1"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"

    # SQLAlchemy database URL
    DATABASE_URL: str = "sqlite:///./data/vaultix.db"
    DB_CONNECT_TIMEOUT_SECONDS: int = 10

    # Login configuration
    ENCODE_KEY: str | None = None
    ENCODE_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 900 # 15 minutes
    REFRESH_TOKEN_EXPIRE_SECONDS: int = 14 * 24 * 3600 # 14 days
    NONCE_EXPIRY_SECONDS: int = 300 # 5 minutes

    # Wallet settings
    CARDANO_NETWORK: str = "" # mainnet, testnet or empty for both

    # Escrow settings
    ARBITRATOR_WALLETS: str = "" # comma-separated wallet addresses
    ESCROW_PAGE_LIMIT_MAX: int = 100

    class Config:
        env_file = ".env"

    def get_arbitrator_wallets(self) -> List[str]:
        """
        Get the wallet addresses allowed to resolve disputes.

        Returns:
            List of wallet addresses (empty list = nobody can arbitrate)
        """
        if not self.ARBITRATOR_WALLETS or self.ARBITRATOR_WALLETS.strip() == "":
            return []

        return [addr.strip() for addr in self.ARBITRATOR_WALLETS.split(",") if addr.strip()]

    def get_cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

# Instantiate the settings
settings = Settings()
