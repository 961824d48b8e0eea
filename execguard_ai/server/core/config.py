"""
Configuration Settings.

This module defines the application configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.
"""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_NAME = "ExecGuard-AI"
API_V1_STR = "/api/v1"

# =====================================================================
# Grouped Configuration Models
# =====================================================================


class BudgetConfig(BaseModel):
    """Default budget limits applied to every budget scope."""

    daily_limit_cents: Optional[int] = Field(
        default=None,
        alias="EXECGUARD_AI_DAILY_LIMIT_CENTS",
        description="Daily spending limit per budget scope, in cents (unset means unlimited)",
    )
    monthly_limit_cents: Optional[int] = Field(
        default=None,
        alias="EXECGUARD_AI_MONTHLY_LIMIT_CENTS",
        description="Monthly spending limit per budget scope, in cents (unset means unlimited)",
    )
    hard: bool = Field(
        default=True,
        alias="EXECGUARD_AI_HARD_BUDGET_LIMITS",
        description="Treat the limits as hard stops instead of warnings",
    )

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Application settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    # =====================================================================
    # Pydantic Configuration
    # =====================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # ExecGuard-AI Server Configuration
    # =====================================================================
    server_host: str = Field(
        default="0.0.0.0",
        description="ExecGuard-AI server host address to bind to",
        alias="EXECGUARD_AI_SERVER_HOST",
    )
    server_port: int = Field(
        default=8000,
        description="ExecGuard-AI server port number",
        alias="EXECGUARD_AI_SERVER_PORT",
    )

    # =====================================================================
    # Logging Configuration
    # =====================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="EXECGUARD_AI_LOG_LEVEL",
    )
    log_format: str = Field(
        default="detailed",
        description="Log line format (simple, detailed, json)",
        alias="EXECGUARD_AI_LOG_FORMAT",
    )
    log_file_dir: str = Field(
        default="logs",
        description="Directory for the log file when file logging is enabled",
        alias="EXECGUARD_AI_LOG_FILE_DIR",
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Also write logs to a file under log_file_dir",
        alias="EXECGUARD_AI_ENABLE_FILE_LOGGING",
    )

    # =====================================================================
    # Database Configuration
    # =====================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="Async database URL for execution persistence; in-memory storage when unset",
        alias="EXECGUARD_AI_DATABASE_URL",
    )

    # =====================================================================
    # Governance Configuration
    # =====================================================================
    step_timeout_seconds: float = Field(
        default=300.0,
        description="Wall-clock limit for a single agent step",
        alias="EXECGUARD_AI_STEP_TIMEOUT_SECONDS",
    )
    confirmation_phrase: str = Field(
        default="CONFIRM",
        description="Phrase an approver must type to approve critical actions",
        alias="EXECGUARD_AI_CONFIRMATION_PHRASE",
    )
    stream_poll_interval_seconds: float = Field(
        default=1.0,
        description="Interval between snapshots for polling progress subscribers",
        alias="EXECGUARD_AI_STREAM_POLL_INTERVAL_SECONDS",
    )
    daily_limit_cents: Optional[int] = Field(
        default=None,
        description="Daily spending limit per budget scope, in cents",
        alias="EXECGUARD_AI_DAILY_LIMIT_CENTS",
    )
    monthly_limit_cents: Optional[int] = Field(
        default=None,
        description="Monthly spending limit per budget scope, in cents",
        alias="EXECGUARD_AI_MONTHLY_LIMIT_CENTS",
    )
    hard_budget_limits: bool = Field(
        default=True,
        description="Treat budget limits as hard stops",
        alias="EXECGUARD_AI_HARD_BUDGET_LIMITS",
    )
    agent_runtime: Optional[str] = Field(
        default=None,
        description="Import path ('module:attribute') of the agent runtime factory",
        alias="EXECGUARD_AI_AGENT_RUNTIME",
    )
    judgment_provider: Optional[str] = Field(
        default=None,
        description="Import path ('module:attribute') of the judgment provider factory",
        alias="EXECGUARD_AI_JUDGMENT_PROVIDER",
    )

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def budget(self) -> BudgetConfig:
        """Get default budget limits from environment variables."""
        return BudgetConfig.model_validate(self.model_dump(by_alias=True))

    def to_governance_config(self):
        """Build the engine-wide ``GovernanceConfig`` from these settings."""
        from execguard_ai.governance.config import BudgetLimits, GovernanceConfig

        budget = self.budget
        return GovernanceConfig(
            step_timeout_seconds=self.step_timeout_seconds,
            confirmation_phrase=self.confirmation_phrase,
            default_budget=BudgetLimits(
                daily_limit_cents=budget.daily_limit_cents,
                monthly_limit_cents=budget.monthly_limit_cents,
                hard=budget.hard,
            ),
        )


settings = Settings()
