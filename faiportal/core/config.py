from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from pathlib import Path


load_dotenv()


class Settings(BaseSettings):
    app_name: str = "FAI Portal API"
    debug: bool = False
    database_url: str = "sqlite:///./fai_portal.db"
    host: str = "127.0.0.1"
    port: int = 8000
    secret_key: str = ""
    access_token_expire_minutes: int = 60 * 8
    allowed_hosts: str = ""
    log_file: Path = Path("logs/application.log")

    # Uploads
    max_upload_bytes: int = 25 * 1024 * 1024  # 25 MiB per document

    # Automated analysis
    analysis_provider: str = "gemini"  # "gemini" or "checklist"
    gemini_api_key: str = ""
    analysis_model: str = "gemini-2.5-pro"
    analysis_timeout_seconds: float = 120.0


settings = Settings()

if not settings.secret_key:
    raise RuntimeError("Secret key not configured.")
