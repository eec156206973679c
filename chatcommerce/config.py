from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./chatcommerce.db"
    debug: bool = False
    log_level: str = "INFO"

    master_book_id: str = "master"
    default_tenant_id: Optional[str] = None
    local_tenants_file: Optional[str] = None

    whatsapp_api_url: str = "https://graph.facebook.com"
    whatsapp_api_version: str = "v21.0"
    whatsapp_verify_token: str = "chatcommerce-verify"
    whatsapp_shared_phone_id: Optional[str] = None
    whatsapp_shared_token: Optional[str] = None

    admin_token: Optional[str] = None

    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    llm_timeout_seconds: float = 8.0

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
