from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # API Configuration
    debug: bool = False
    environment: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"

    # OpenAI Configuration (secrets come from environment)
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    # Used whenever at least one image is attached to the request
    openai_vision_model: str = "gpt-4o"
    openai_max_completion_tokens: int = 8000
    openai_temperature: float = 0.7

    # Generation retry policy: 1 initial attempt + N retries,
    # waiting 2**attempt * base seconds before each retry
    generation_max_retries: int = 3
    generation_backoff_base_seconds: float = 1.0
    # When True, terminal API errors (auth, bad request) are retried too
    generation_retry_all_errors: bool = False

    # JIRA Integration (configure via environment)
    jira_base_url: Optional[str] = None
    jira_username: Optional[str] = None
    jira_api_token: Optional[str] = None
    jira_acceptance_criteria_fields: List[str] = ["customfield_10026", "customfield_10016"]
    jira_timeout_seconds: float = 30.0

    # Image uploads
    upload_dir: str = "./uploads"
    max_upload_files: int = 5
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_image_types: List[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
    ]
    image_max_width: int = 1920
    image_max_height: int = 1080
    image_jpeg_quality: int = 85

    # Image sessions
    image_session_ttl_minutes: float = 30.0
    image_session_sweep_interval_minutes: float = 10.0

    # Database Configuration
    database_url: str = "sqlite:///./data/casegen.db"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
