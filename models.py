from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text
from sqlalchemy.sql import func
from database import Base


class ShareLink(Base):
    """
    A share link issued by an admin.
    The token itself is a signed JWT; revocation goes through the KV blocklist
    keyed by ``jti``, so this row is only the listing/statistics record.
    """
    __tablename__ = "share_links"

    id = Column(String, primary_key=True, index=True)
    path = Column(String, nullable=False)
    token = Column(Text, nullable=False)
    jti = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    login_required = Column(Boolean, default=False)
    item_name = Column(String)
    is_collection = Column(Boolean, default=False)
    views = Column(Integer, default=0)
    # Microsecond resolution for newest-first listings
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                        server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "path": self.path,
            "token": self.token,
            "jti": self.jti,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "loginRequired": bool(self.login_required),
            "itemName": self.item_name,
            "isCollection": bool(self.is_collection),
            "views": self.views or 0,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class ProtectedFolder(Base):
    """Password gate for a Drive folder (and everything below it)."""
    __tablename__ = "protected_folders"

    folder_id = Column(String, primary_key=True, index=True)
    access_id = Column(String, nullable=False, default="admin")
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class AdminConfig(Base):
    """Flat key/value settings. The app config lives under a single key as JSON."""
    __tablename__ = "admin_config"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
