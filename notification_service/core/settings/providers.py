"""Credentials and endpoints for delivery providers."""

from __future__ import annotations

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    """Push, email, SMS and WhatsApp provider settings.

    Environment variables use PROVIDERS_ prefix.
    Example: PROVIDERS_TWILIO_ACCOUNT_SID=AC..., PROVIDERS_SMTP_HOST=smtp.example.com

    A provider without credentials is reported unavailable and its channel
    fails every send with an AUTH_ERROR-classified message.
    """

    request_timeout: float = Field(default=10.0, gt=0.0, description="Outbound HTTP timeout")

    # ──────────────────────────────────────────────────────────────
    # Push (FCM for Android/Web, APNs for iOS)
    # ──────────────────────────────────────────────────────────────

    fcm_url: str = Field(
        default="https://fcm.googleapis.com/v1/projects/{project_id}/messages:send",
        description="FCM HTTP v1 endpoint template",
    )
    fcm_project_id: str | None = Field(default=None, description="Firebase project id")
    fcm_access_token: SecretStr | None = Field(default=None, description="OAuth bearer token")
    apns_url: str = Field(
        default="https://api.push.apple.com/3/device/{token}",
        description="APNs endpoint template",
    )
    apns_topic: str | None = Field(default=None, description="iOS bundle id")
    apns_auth_token: SecretStr | None = Field(default=None, description="APNs provider JWT")

    # ──────────────────────────────────────────────────────────────
    # Email (SMTP)
    # ──────────────────────────────────────────────────────────────

    smtp_host: str | None = Field(default=None, description="SMTP server host")
    smtp_port: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: SecretStr | None = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Issue STARTTLS")
    email_from: str = Field(default="notifications@localhost", description="From address")

    # ──────────────────────────────────────────────────────────────
    # SMS (Twilio REST)
    # ──────────────────────────────────────────────────────────────

    twilio_url: str = Field(
        default="https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json",
        description="Twilio messages endpoint template",
    )
    twilio_account_sid: str | None = Field(default=None, description="Twilio account SID")
    twilio_auth_token: SecretStr | None = Field(default=None, description="Twilio auth token")
    twilio_from_number: str | None = Field(default=None, description="Sender number in E.164")

    # ──────────────────────────────────────────────────────────────
    # WhatsApp (Meta Cloud API)
    # ──────────────────────────────────────────────────────────────

    whatsapp_api_url: str = Field(
        default="https://graph.facebook.com/v18.0", description="Graph API base URL",
    )
    whatsapp_phone_number_id: str | None = Field(default=None, description="Sender phone id")
    whatsapp_access_token: SecretStr | None = Field(default=None, description="Bearer token")
    whatsapp_max_messages_per_day: int = Field(
        default=1000, ge=1, description="Daily send budget, reset at UTC midnight",
    )

    @computed_field
    @property
    def fcm_configured(self) -> bool:
        return bool(self.fcm_project_id and self.fcm_access_token)

    @computed_field
    @property
    def apns_configured(self) -> bool:
        return bool(self.apns_topic and self.apns_auth_token)

    @computed_field
    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)

    @computed_field
    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

    @computed_field
    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)

    model_config = SettingsConfigDict(
        env_prefix="PROVIDERS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )
