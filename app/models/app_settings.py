from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func

from app.db.base import Base
from app.models.types import EncryptedString


SETTINGS_ROW_ID = 1


class AppSettings(Base):
    """Process-wide runtime configuration; a single row with a fixed id."""

    __tablename__ = "app_settings"
    __table_args__ = (
        CheckConstraint("sync_interval BETWEEN 1 AND 60", name="ck_app_settings_sync_interval"),
    )

    id = Column(Integer, primary_key=True, default=SETTINGS_ROW_ID)
    sync_interval = Column(Integer, nullable=False, default=5, server_default="5")
    ad_server = Column(String(255), nullable=False, default="", server_default="")
    ad_port = Column(Integer, nullable=False, default=389, server_default="389")
    ad_base_dn = Column(String(255), nullable=False, default="", server_default="")
    ad_domain = Column(String(255), nullable=False, default="", server_default="")
    ad_bind_user = Column(String(255), nullable=False, default="", server_default="")
    ad_bind_password = Column(EncryptedString(), nullable=True)
    ad_group_filter = Column(String(512), nullable=False, default="", server_default="")
    logo_url = Column(String(512), nullable=False, default="", server_default="")
    favicon_url = Column(String(512), nullable=False, default="", server_default="")
    last_sync_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
