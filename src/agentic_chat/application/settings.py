"""Application settings configuration for agentic-chat."""

from neuroglia.hosting.abstractions import ApplicationSettings


class Settings(ApplicationSettings):
    """agentic-chat settings, read from the environment with the AGENTIC_CHAT_ prefix."""

    # Logging Configuration
    log_level: str = "INFO"
    log_file_enabled: bool = False
    log_filename: str = "logs/agentic-chat.log"

    # Model Configuration
    model_id: str = "llama3.2:3b"
    ollama_url: str = "http://localhost:11434"
    ollama_timeout: float = 120.0
    ollama_temperature: float = 0.7
    ollama_top_p: float = 0.9
    ollama_num_ctx: int = 8192

    # Invalid-stream retry (handled inside ChatSession)
    invalid_content_max_attempts: int = 3  # 1 initial + 2 retries
    invalid_content_initial_delay_ms: int = 500

    # Transport backoff (quota / network errors when opening a stream)
    transport_retry_max_attempts: int = 5
    transport_retry_initial_delay_ms: int = 5000
    transport_retry_max_delay_ms: int = 30000
    transport_quota_fallback_after: int = 2

    # Chat compression
    compression_token_threshold: float = 0.7
    compression_preserve_threshold: float = 0.3
    context_token_limit: int = 8192

    # Tools
    mutator_tool_kinds: list[str] = ["edit", "delete", "move", "execute"]
    approval_mode: str = "default"  # default, auto_edit, yolo

    # Sessions
    title_generation_enabled: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "AGENTIC_CHAT_"
        extra = "ignore"


app_settings = Settings()
