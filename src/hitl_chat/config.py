"""
Configuration management for hitl-chat.
Loads settings from environment variables and the YAML tool policy file.
"""

from importlib.resources import files
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings


# Default tool policy, shipped inside the package
DEFAULT_POLICY = "policy.yaml"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use the available tools when they help answer "
    "the user. Some tools require a human to approve the call; if a call is "
    "denied, tell the user and do not retry it."
)


class Settings(BaseSettings):
    """Application settings loaded from environment and .env file."""

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    openai_temperature: float = Field(default=0.2, alias="OPENAI_TEMPERATURE")

    # HumanLayer
    humanlayer_api_key: Optional[str] = Field(default=None, alias="HUMANLAYER_API_KEY")
    humanlayer_run_id: str = Field(default="hitl-chat", alias="HUMANLAYER_RUN_ID")
    humanlayer_verbose: bool = Field(default=False, alias="HUMANLAYER_VERBOSE")

    # Approvals
    approval_backend: str = Field(default="auto", alias="APPROVAL_BACKEND")
    approval_server_url: str = Field(
        default="http://localhost:8001", alias="APPROVAL_SERVER_URL"
    )
    approval_poll_interval: float = Field(default=3.0, alias="APPROVAL_POLL_INTERVAL")
    approval_timeout: Optional[float] = Field(default=None, alias="APPROVAL_TIMEOUT")

    # Agent
    max_iterations: int = Field(default=10, alias="MAX_ITERATIONS")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, alias="SYSTEM_PROMPT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")
    config_path: Optional[Path] = Field(default=None, alias="HITL_CONFIG_PATH")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


def load_config(config_path: Optional[Path] = None) -> dict:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file (defaults to the packaged policy.yaml)

    Returns:
        Configuration dict (empty if the default file is absent)

    Raises:
        FileNotFoundError: If an explicit config_path does not exist
    """
    if config_path is None:
        resource = files("hitl_chat").joinpath(DEFAULT_POLICY)
        if not resource.is_file():
            return {}
        return yaml.safe_load(resource.read_text(encoding="utf-8")) or {}

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f)

    return config or {}


def get_settings() -> Settings:
    """
    Get application settings.

    Returns:
        Settings instance
    """
    return Settings()


# Singleton instance
_settings: Optional[Settings] = None


def get_cached_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = get_settings()
    return _settings
