from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "APAR Engine"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Payables and receivables allocation, aging and reconciliation"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "apar"

    # Allocation
    ALLOCATION_MAX_RETRIES: int = 3
    ALLOCATION_CLAMP_DEFAULT: bool = False
    CREDIT_ORDERING: str = "notes_first"  # notes_first | advances_first | oldest_first

    # Reconciliation
    RECONCILIATION_TIMEOUT_SECONDS: float = 30.0

    # Payment proposals
    PROPOSAL_DAYS_THRESHOLD: int = 7
    PROPOSAL_MEDIUM_PRIORITY_DAYS: int = 3

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
