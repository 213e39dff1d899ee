"""
Pantry CRM Console Configuration
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Console settings"""

    # Application
    app_name: str = "Pantry CRM Console"
    version: str = "0.3.0"

    # Pipeline API
    pipeline_api_url: str = "http://localhost:8001"
    pipeline_api_timeout: int = 30
    api_v1_prefix: str = "/api/v1"

    # Opportunity list
    default_page_size: int = 20
    batch_max_size: int = 25

    class Config:
        env_file = ".env"
        env_prefix = "CONSOLE_"
        case_sensitive = False


# Global settings instance
settings = Settings()
