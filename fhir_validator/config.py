from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


ConstraintEngine = Literal["simple", "fhirpath"]

BUNDLED_PROFILES = Path(__file__).parent / "profiles" / "definitions"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="")

    SERVICE_NAME: str = "fhir-profile-validator"
    LOG_LEVEL: str = "INFO"
    PROFILES_PATH: str = str(BUNDLED_PROFILES)

    # Terminology server
    TERMINOLOGY_ENABLED: bool = False
    TERMINOLOGY_BASE_URL: str = "https://tx.fhir.org/r4"
    TERMINOLOGY_TOKEN_URL: Optional[str] = None
    TERMINOLOGY_USERNAME: Optional[str] = None
    TERMINOLOGY_PASSWORD: Optional[str] = None
    TERMINOLOGY_CLIENT_ID: str = "cli_client"
    TERMINOLOGY_TIMEOUT: float = 5.0
    TERMINOLOGY_CACHE_TTL: int = 3600  # 1 hour

    # Shared value-set cache
    REDIS_ENABLED: bool = False
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # Validation engine
    MAX_WALK_DEPTH: int = 64
    CHOICE_ELEMENT_PREFIXES: List[str] = ["effective", "deceased", "multipleBirth"]
    CONSTRAINT_ENGINE: ConstraintEngine = "fhirpath"

    def profile_paths(self) -> list[Path]:
        p = Path(self.PROFILES_PATH)
        if p.is_dir():
            return sorted(
                [
                    *p.glob("*.json"),
                    *p.glob("*.yaml"),
                    *p.glob("*.yml"),
                ]
            )
        return [p]


def get_settings() -> Settings:
    return Settings()
