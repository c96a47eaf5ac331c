from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # -------------------------
    # App
    # -------------------------
    app_name: str = "EMMA Action Gate"
    api_prefix: str = "/api"
    cors_allow_origins: str = "*"
    log_level: str = "INFO"

    # -------------------------
    # Supabase
    # -------------------------
    supabase_url: str | None = None
    supabase_service_key: str | None = None

    # memory | supabase
    audit_backend: str = "memory"
    recent_actions_backend: str = "memory"

    # -------------------------
    # LLM decision policy
    # -------------------------
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    llm_decision_timeout_seconds: float = 10.0

    # -------------------------
    # Validation policy
    # -------------------------
    validation_policy_file: str = "action_validation_policy_v1.yaml"
    default_override_mode: str | None = None
    approval_timeout_minutes: int | None = None

    # -------------------------
    # Pydantic v2 config
    # -------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
