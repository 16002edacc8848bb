from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (required at first use)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: str = "http://localhost:3000"
    openrouter_app_title: str = "Deep Research AI Agent"
    default_model: str = "google/gemini-2.0-flash-lite-preview-02-05:free"
    # Optional per-stage overrides; empty means default_model
    question_model: str = ""
    planning_model: str = "google/gemini-2.0-flash-thinking-exp:free"
    extraction_model: str = ""
    analysis_model: str = ""
    report_model: str = ""

    # Search provider
    search_provider: str = "exa"  # exa | tavily
    search_fallback_to_tavily: bool = False
    exa_api_key: str = ""
    exa_base_url: str = "https://api.exa.ai"
    tavily_api_key: str = ""
    search_num_results: int = 5
    search_type: str = "neural"  # keyword | neural | auto

    # Model call policy
    model_max_attempts: int = 3
    model_retry_base_delay_seconds: float = 1.0
    model_timeout_seconds: float = 60.0
    search_timeout_seconds: float = 30.0

    # Pipeline limits
    max_content_chars: int = 8000
    max_documents_per_question: int = 5
    max_iterations: int = 3
    max_follow_up_queries: int = 2
    report_chunk_chars: int = 100
    fallback_stage_delay_seconds: float = 0.5

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
