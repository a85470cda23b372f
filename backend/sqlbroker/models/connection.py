"""
Connection Profile Model - Stores target database configurations
"""
from sqlalchemy import Column, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from sqlbroker.database import Base
import enum
import uuid


class ConnectionType(str, enum.Enum):
    """Supported target database types."""
    MSSQL = "mssql"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class ConnectionProfile(Base):
    """
    Target database connection profile.

    Endpoint parameters and the password are encrypted at rest; only the
    credential vault decrypts them, transiently, for pool creation.
    """
    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    db_type = Column(String(50), nullable=False, default=ConnectionType.MSSQL.value)

    # JSON of host/port/database/user/encrypt/trust_server_certificate/timeouts
    encrypted_config = Column(Text, nullable=False)
    encrypted_password = Column(Text, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<ConnectionProfile {self.id} {self.name!r} active={self.is_active}>"
