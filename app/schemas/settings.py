from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


PASSWORD_MASK = "********"


class AppSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sync_interval: int
    ad_server: str
    ad_port: int
    ad_base_dn: str
    ad_domain: str
    ad_bind_user: str
    ad_bind_password: str = ""
    ad_group_filter: str
    logo_url: str
    favicon_url: str
    last_sync_time: datetime | None = None


class AppSettingsUpdate(BaseModel):
    sync_interval: int | None = Field(default=None, ge=1, le=60)
    ad_server: str | None = Field(default=None, max_length=255)
    ad_port: int | None = Field(default=None, ge=1, le=65535)
    ad_base_dn: str | None = Field(default=None, max_length=255)
    ad_domain: str | None = Field(default=None, max_length=255)
    ad_bind_user: str | None = Field(default=None, max_length=255)
    ad_bind_password: str | None = Field(default=None, max_length=255)
    ad_group_filter: str | None = Field(default=None, max_length=512)
    logo_url: str | None = Field(default=None, max_length=512)
    favicon_url: str | None = Field(default=None, max_length=512)


class PublicSettings(BaseModel):
    logo_url: str
    favicon_url: str


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
