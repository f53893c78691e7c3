"""
Person Resolver Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Paths (use RESOLVER_ prefix)
    db_path: Path = Field(
        default=Path("./data/people.db"),
        alias="RESOLVER_DB_PATH",
        description="SQLite database holding persons and their dependent tables"
    )
    plan_path: Path = Field(
        default=Path("./data/dedup-plan.json"),
        alias="RESOLVER_PLAN_PATH",
        description="Where dry-run dedup plans are written"
    )

    # Server
    port: int = Field(default=8000, alias="RESOLVER_PORT")
    host: str = Field(default="0.0.0.0", alias="RESOLVER_HOST")

    log_level: str = Field(default="INFO", alias="RESOLVER_LOG_LEVEL")

    # ==========================================================================
    # MATCHING THRESHOLDS
    # ==========================================================================
    # Edit distance tolerance is length-scaled: tokens up to
    # short_token_max_length chars allow 1 edit, longer tokens allow 2.
    # Tokens shorter than fuzzy_min_token_length only match exactly.
    # ==========================================================================

    fuzzy_min_token_length: int = Field(default=4, alias="RESOLVER_FUZZY_MIN_TOKEN_LENGTH")
    # Given names are short and crowded ("Mark"/"Mary"), so they need more letters
    fuzzy_min_given_length: int = Field(default=5, alias="RESOLVER_FUZZY_MIN_GIVEN_LENGTH")
    short_token_max_length: int = Field(default=6, alias="RESOLVER_SHORT_TOKEN_MAX_LENGTH")
    min_spaceless_length: int = Field(
        default=6,
        alias="RESOLVER_MIN_SPACELESS_LENGTH",
        description="Minimum length of a spaceless key before it can prove a match"
    )

    # Blocking: prefix length of the family-token bucket key
    block_key_length: int = Field(default=3, alias="RESOLVER_BLOCK_KEY_LENGTH")

    # Batch dedup: repeat build+merge until nothing merges, at most this many rounds
    max_dedup_rounds: int = Field(default=5, alias="RESOLVER_MAX_DEDUP_ROUNDS")

    # Online path: re-fetch-and-merge attempts after a uniqueness violation
    ingest_max_retries: int = Field(default=1, alias="RESOLVER_INGEST_MAX_RETRIES")

    # Read-through catalog cache
    cache_ttl_seconds: int = Field(default=300, alias="RESOLVER_CACHE_TTL_SECONDS")

    @property
    def data_dir(self) -> Path:
        """Directory holding the database and plan files."""
        return Path(self.db_path).parent


settings = Settings()
