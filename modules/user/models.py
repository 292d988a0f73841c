"""
User Module - User Model
==========================
Guests, hosts, and admins share one users table.
A user can hold several roles at once (is_host, is_admin).
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from config.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # === Identity ===
    email = Column(String(256), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=True)
    phone_number = Column(String(20), nullable=True)

    # === Role Flags ===
    is_host = Column(Boolean, default=False, server_default="false", nullable=False, index=True)
    is_admin = Column(Boolean, default=False, server_default="false", nullable=False, index=True)
    is_active = Column(Boolean, default=True, server_default="true", nullable=False, index=True)

    # === Audit ===
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<User {self.id} {self.email}>"
