"""Central configuration using Pydantic BaseSettings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

CONFIG_DIR = Path(__file__).parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    # OpenRouter (remote reasoning backend)
    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_default_model: str = "anthropic/claude-sonnet-4.5"
    openrouter_fallback_models: list[str] = []
    ai_max_tokens: int = Field(default=4096, alias="AI_MAX_TOKENS")

    # Backend arbitration: "online", "offline" or "hybrid"
    ai_mode: str = Field(default="hybrid", alias="AI_MODE")
    health_probe_interval_seconds: float = 60.0
    health_probe_timeout_seconds: float = 5.0

    # Lighting controller
    aether_core_url: str = Field(default="http://localhost:8891", alias="AETHER_CORE_URL")
    device_api_timeout_seconds: float = 10.0

    # Sessions
    session_ttl_seconds: float = 24 * 60 * 60
    session_sweep_interval_seconds: float = 60 * 60

    # Safety
    confirmation_expiry_seconds: float = 60.0
    max_tool_depth: int = 5
    risk_policy_path: str = str(CONFIG_DIR / "risk_policy.yaml")

    # Audit trail
    audit_log_capacity: int = 1000
    audit_db_path: str = Field(default="", alias="AUDIT_DB_PATH")

    # Prompts
    system_prompt_path: str = str(CONFIG_DIR / "system_prompt.txt")

    # Application
    app_name: str = "AETHER AI"
    debug: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }


settings = Settings()
