from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Assessment Recorder API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    aws_region: str = "us-east-1"
    # Some regions only allow on-demand invocation through an inference profile ID (e.g. `eu.amazon.nova-pro-v1:0`).
    bedrock_model_id: str = "amazon.nova-pro-v1:0"
    agent_temperature: float = 0.1
    agent_top_p: float = 0.95
    agent_top_k: int = 1
    agent_max_tokens: int = 10000
    prompt_language: str = "en"  # en|ja

    kv_backend: str = "memory"  # memory|redis
    redis_url: str = "redis://localhost:6379/0"
    kv_namespace: str = ""
    # Must stay below the per-value payload ceiling of the key-value store.
    blob_chunk_size_bytes: int = 900_000
    blob_ttl_seconds: int = 86400 * 30
    assessment_ttl_seconds: int = 86400 * 90

    max_document_bytes: int = 100 * 1024 * 1024
    max_document_pages: int = 1000
    word_page_char_budget: int = 3000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
