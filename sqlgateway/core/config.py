from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Connection pool for the shared engine
    DB_POOL_SIZE: int = 5
    DB_POOL_RECYCLE_SECONDS: int = 1800
    DB_ECHO: bool = False

    # Query path
    ROW_LIMIT_DEFAULT: int = 200
    ROW_LIMIT_MAX: int = 5000
    SQL_LOG_MAX_CHARS: int = 200

    # Schema path
    SCHEMA_WHITELIST: str = "vw%"
    SCHEMA_OBJECT_TYPES: str = "both"
    OBJECT_ALLOWLIST: str = ""
    SCHEMA_INCLUDE_TYPES: str = "tables,views"
    SCHEMA_EXCLUDE_SCHEMAS: str = "sys,INFORMATION_SCHEMA,cdc"
    DESCRIPTIONS_FILE: Optional[str] = None

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # A bad default mode is a deployment fault, so it fails at startup
    @field_validator("SCHEMA_OBJECT_TYPES")
    @classmethod
    def known_object_types(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("views", "tables", "both"):
            raise ValueError("SCHEMA_OBJECT_TYPES must be views, tables or both")
        return value

    @property
    def object_allowlist(self) -> List[str]:
        return _split_csv(self.OBJECT_ALLOWLIST)

    @property
    def include_types(self) -> List[str]:
        return [item.lower() for item in _split_csv(self.SCHEMA_INCLUDE_TYPES)]

    @property
    def exclude_schemas(self) -> List[str]:
        return _split_csv(self.SCHEMA_EXCLUDE_SCHEMAS)


# Create a single instance of the settings to use everywhere
settings = Settings()
