from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # MongoDB (project store)
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "ai_data_engineer"

    # LiteLLM Proxy
    litellm_proxy_url: str = "http://localhost:4000"
    litellm_api_key: str = ""
    llm_model: str = "default"
    llm_temperature: float = 0.1
    llm_timeout_seconds: float = 45.0
    llm_max_retries: int = 1
    chat_max_attempts: int = 3

    # Backend
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000
    backend_cors_origins: str = "http://localhost:3000"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.backend_cors_origins.split(",")]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
