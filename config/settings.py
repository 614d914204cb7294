"""Configuration settings and data models."""

import json
import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = "bracket_config.json"


class StorageConfig(BaseModel):
    """Transactional store configuration."""

    db_path: str = Field(default="brackets.db", description="SQLite database file")
    busy_timeout: float = Field(
        default=30.0, description="Seconds to wait for the database write lock"
    )

    @field_validator("busy_timeout")
    @classmethod
    def validate_busy_timeout(cls, v):
        if v <= 0:
            raise ValueError("busy_timeout must be positive")
        return v


class VotingConfig(BaseModel):
    """Round gating and tie-break policy."""

    require_previous_round_decided: bool = Field(
        default=False,
        description="Refuse to open round R while any round R-1 matchup is undecided",
    )
    tie_break_seed: Optional[int] = Field(
        default=None, description="Seed for the final-round tie-break; random if unset"
    )


class SystemConfig(BaseModel):
    """System-wide configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=8000, description="HTTP port")


class AppConfig(BaseModel):
    """Complete application configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    voting: VotingConfig = Field(default_factory=VotingConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "AppConfig":
        """Load configuration from JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        required_sections = ["storage", "voting", "system"]
        missing_sections = [
            section for section in required_sections if section not in data
        ]
        if missing_sections:
            raise ValueError(f"Missing required config sections: {missing_sections}")

        return cls(**data)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_unset=True),
                f,
                default_flow_style=False,
                indent=2,
            )

    def apply_env_overrides(self) -> "AppConfig":
        """Environment variables win over file values."""
        if "BRACKET_DB_PATH" in os.environ:
            self.storage.db_path = os.environ["BRACKET_DB_PATH"]
        if "PORT" in os.environ:
            self.system.port = int(os.environ["PORT"])
        return self


def get_default_config() -> AppConfig:
    """Load default configuration from bracket_config.json, creating it if needed."""
    config_path = Path(os.environ.get("BRACKET_CONFIG", DEFAULT_CONFIG_PATH))
    if not config_path.exists():
        template_config = get_template_config()
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(template_config.model_dump(), f, indent=2)
    return AppConfig.load_from_file(config_path).apply_env_overrides()


def get_template_config() -> AppConfig:
    """Get template configuration for config file generation."""
    return AppConfig(
        storage=StorageConfig(db_path="brackets.db", busy_timeout=30.0),
        voting=VotingConfig(
            require_previous_round_decided=False,
            tie_break_seed=None,
        ),
        system=SystemConfig(log_level="INFO", host="0.0.0.0", port=8000),
    )
