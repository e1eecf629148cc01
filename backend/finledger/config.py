from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://ledger_admin:ledger_secret@db:5432/ledger_db"
    DB_AUTO_CREATE: bool = False
    JWT_SECRET: str = "ledger-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 480
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    LOG_LEVEL: str = "INFO"
    RECONCILIATION_INTERVAL_HOURS: int = 24

    # Fixed chart of accounts codes
    CASH_ACCOUNT_CODE: str = "1010"
    RECEIVABLE_ACCOUNT_CODES: list[str] = ["1200", "1100"]
    PAYABLE_ACCOUNT_CODE: str = "2010"
    SALES_ACCOUNT_CODE: str = "4000"
    SALES_RETURNS_ACCOUNT_CODE: str = "4900"
    DEFAULT_EXPENSE_ACCOUNT_CODE: str = "7000"
    OPENING_EQUITY_ACCOUNT_CODE: str = "3000"

    class Config:
        env_file = ".env"


settings = Settings()
