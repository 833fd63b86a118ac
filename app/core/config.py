from decimal import Decimal
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    auto_create_tables: bool = Field(True, alias="AUTO_CREATE_TABLES")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Seeded on startup when both are set
    admin_email: Optional[str] = Field(None, alias="ADMIN_EMAIL")
    admin_password: Optional[str] = Field(None, alias="ADMIN_PASSWORD")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], alias="CORS_ORIGINS")

    # Fees are computed server-side only
    registration_fee: Decimal = Field(Decimal("1870.00"), alias="REGISTRATION_FEE")
    currency: str = Field("INR", alias="CURRENCY")

    razorpay_key_id: Optional[str] = Field(None, alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: Optional[str] = Field(None, alias="RAZORPAY_KEY_SECRET")
    razorpay_webhook_secret: Optional[str] = Field(None, alias="RAZORPAY_WEBHOOK_SECRET")
    razorpay_api_base: str = Field("https://api.razorpay.com/v1", alias="RAZORPAY_API_BASE")
    gateway_timeout_seconds: float = Field(10.0, alias="GATEWAY_TIMEOUT_SECONDS")

    meeting_api_url: Optional[str] = Field(None, alias="MEETING_API_URL")
    meeting_base_url: str = Field("https://meet.google.com", alias="MEETING_BASE_URL")
    interview_lead_minutes: int = Field(60, alias="INTERVIEW_LEAD_MINUTES")
    interview_duration_minutes: int = Field(30, alias="INTERVIEW_DURATION_MINUTES")

    event_buffer_size: int = Field(500, alias="EVENT_BUFFER_SIZE")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
