from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Any, Iterable, Literal
import json


class Settings(BaseSettings):
    POSTGRES_HOST: str = "db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "app"
    POSTGRES_USER: str = "app"
    POSTGRES_PASSWORD: str = "app"

    DATABASE_URL: str = "postgresql+asyncpg://app:app@db:5432/app"

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "/var/log/app/shiftcore"

    # Weekly hours above which an approval is annotated with an overtime warning.
    OVERTIME_THRESHOLD_HOURS: float = 40
    # "block" fails an approval on a new hard worker overlap, "warn" lets it through with warnings.
    APPROVAL_OVERLAP_POLICY: Literal["block", "warn"] = "block"
    HISTORY_LIMIT: int = 50

    # Worker IDs always treated as managers. Alias allows env var MANAGER_IDS.
    manager_ids: List[int] = Field(default_factory=list, alias="MANAGER_IDS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("OVERTIME_THRESHOLD_HOURS")
    @classmethod
    def non_negative_threshold(cls, v: float) -> float:
        if v < 0:
            raise ValueError("OVERTIME_THRESHOLD_HOURS must be >= 0")
        return v

    @field_validator("manager_ids", mode="before")
    @classmethod
    def parse_manager_ids(cls, v: Any) -> List[int]:
        if v is None:
            return []
        if isinstance(v, (list, tuple, set)):
            return [int(x) for x in v]
        if isinstance(v, int):
            return [int(v)]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            # JSON array first, then CSV, then a single id
            if s.startswith("[") and s.endswith("]"):
                try:
                    data = json.loads(s)
                    if isinstance(data, Iterable):
                        return [int(x) for x in data]
                except ValueError:
                    pass
            if "," in s:
                parts = [p.strip() for p in s.split(",") if p.strip()]
                return [int(p) for p in parts]
            return [int(s)]
        try:
            return [int(v)]
        except (TypeError, ValueError):
            return []


settings = Settings()
