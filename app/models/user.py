from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text, func

from app.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('officer', 'manager', 'manager_viewer', 'admin', 'admin_editor')",
            name="ck_users_role",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(150), nullable=False, unique=True, index=True)
    role = Column(String(32), nullable=False, default="officer", server_default="officer")
    # Comma-separated branch names or the wildcard token ("All" / "*").
    branches = Column(Text, nullable=False, default="", server_default="")
    hashed_password = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
