"""
Settings for the ivrflow command line and exporters.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .compiler import DeadBranchPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="IVRFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="WARNING", description="Log level")

    # Layout
    flows_dir: Path = Field(default=Path("flows"), description="Where flow documents are kept")
    scripts_dir: Path = Field(default=Path("artifacts"), description="Where compiled scripts are written")

    # Compilation
    default_dead_branch_policy: Optional[DeadBranchPolicy] = Field(
        default=None,
        description="Policy for unconnected options when --on-dead-branch is not given",
    )
    agi_context: str = Field(default="ivr-flow", description="Dialplan context of exported AGI scripts")
    reprompt_limit: int = Field(default=3, ge=1, description="Re-prompts before a dead branch hangs up")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
