"""
Credential Vault - decrypt-on-demand access to target connection parameters
"""
from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional
import json

from sqlalchemy.engine import URL
from sqlalchemy.orm import sessionmaker
import structlog

from sqlbroker.config import settings
from sqlbroker.core.crypto import encrypt_value, decrypt_value
from sqlbroker.core.exceptions import ConnectionNotFound, ConnectionUnavailable
from sqlbroker.database import AppSessionLocal, get_app_db_context
from sqlbroker.models.connection import ConnectionProfile, ConnectionType

logger = structlog.get_logger()

DEFAULT_PORTS = {
    ConnectionType.MSSQL.value: 1433,
    ConnectionType.POSTGRESQL.value: 5432,
    ConnectionType.MYSQL.value: 3306,
}

ASYNC_DRIVERS = {
    ConnectionType.MSSQL.value: "mssql+aioodbc",
    ConnectionType.POSTGRESQL.value: "postgresql+asyncpg",
    ConnectionType.MYSQL.value: "mysql+aiomysql",
    ConnectionType.SQLITE.value: "sqlite+aiosqlite",
}


class PoolKey(NamedTuple):
    """Identity used to share one pool between connection profiles."""
    server: str
    database: str


@dataclass(frozen=True)
class TargetDescriptor:
    """Decrypted target connection parameters. Never persisted or logged."""
    connection_id: str
    name: str
    db_type: str
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    encrypt: bool = True
    trust_server_certificate: bool = False
    connect_timeout_ms: int = 30000
    request_timeout_ms: int = 30000

    @property
    def pool_key(self) -> PoolKey:
        return PoolKey(server=self.host or "", database=self.database)

    @property
    def connect_timeout_seconds(self) -> float:
        return self.connect_timeout_ms / 1000

    def url(self) -> URL:
        """Build the SQLAlchemy async URL for this target."""
        drivername = ASYNC_DRIVERS.get(self.db_type)
        if not drivername:
            raise ValueError(f"Unsupported database type: {self.db_type}")

        if self.db_type == ConnectionType.SQLITE.value:
            return URL.create(drivername, database=self.database)

        query: Dict[str, str] = {}
        if self.db_type == ConnectionType.MSSQL.value:
            query = {
                "driver": settings.MSSQL_ODBC_DRIVER,
                "Encrypt": "yes" if self.encrypt else "no",
                "TrustServerCertificate": "yes" if self.trust_server_certificate else "no",
            }

        return URL.create(
            drivername,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port or DEFAULT_PORTS.get(self.db_type),
            database=self.database,
            query=query,
        )

    def connect_args(self) -> Dict[str, Any]:
        """Driver-specific connect options (login timeout, TLS)."""
        timeout = max(1, int(self.connect_timeout_seconds))

        if self.db_type == ConnectionType.MSSQL.value:
            return {"timeout": timeout}
        if self.db_type == ConnectionType.POSTGRESQL.value:
            args: Dict[str, Any] = {"timeout": timeout}
            if self.encrypt:
                args["ssl"] = "require"
            return args
        if self.db_type == ConnectionType.MYSQL.value:
            return {"connect_timeout": timeout}
        return {}


class CredentialVault:
    """
    Encrypts target connection parameters at rest and decrypts them on demand.

    The vault is the only component that sees plaintext credentials, and only
    for the duration of a call.
    """

    def __init__(self, session_factory: sessionmaker = AppSessionLocal):
        self._session_factory = session_factory

    def decrypt(self, connection_id: str) -> TargetDescriptor:
        """
        Load and decrypt a connection profile.

        Args:
            connection_id: Connection profile ID

        Returns:
            TargetDescriptor with plaintext parameters

        Raises:
            ConnectionNotFound: If the profile is missing or inactive
            ConnectionUnavailable: If the stored parameters cannot be decrypted
        """
        with get_app_db_context(self._session_factory) as db:
            profile = db.get(ConnectionProfile, connection_id)
            if profile is None or not profile.is_active:
                raise ConnectionNotFound("Connection not found or inactive")
            name = profile.name
            db_type = profile.db_type
            encrypted_config = profile.encrypted_config
            encrypted_password = profile.encrypted_password

        raw_config = decrypt_value(encrypted_config)
        password = decrypt_value(encrypted_password) if encrypted_password else None
        if raw_config is None or (encrypted_password and password is None):
            logger.error("connection_decrypt_failed", connection_id=connection_id)
            raise ConnectionUnavailable("Stored connection parameters could not be decrypted")

        config = json.loads(raw_config)
        return TargetDescriptor(
            connection_id=connection_id,
            name=name,
            db_type=db_type,
            database=config["database"],
            host=config.get("host"),
            port=config.get("port"),
            user=config.get("user"),
            password=password,
            encrypt=config.get("encrypt", True),
            trust_server_certificate=config.get("trust_server_certificate", False),
            connect_timeout_ms=config.get("connect_timeout_ms", 30000),
            request_timeout_ms=config.get("request_timeout_ms", 30000),
        )

    def store(
        self,
        name: str,
        config: Dict[str, Any],
        password: Optional[str] = None,
        db_type: str = ConnectionType.MSSQL.value,
        created_by: Optional[str] = None
    ) -> str:
        """
        Encrypt and persist a new connection profile.

        Args:
            name: Display name
            config: host, port, database, user, encrypt, trust_server_certificate,
                connect_timeout_ms, request_timeout_ms
            password: Plaintext password (encrypted before storage)
            db_type: Target database type
            created_by: ID of the administrator creating the profile

        Returns:
            New connection profile ID
        """
        if db_type not in ASYNC_DRIVERS:
            raise ValueError(f"Unsupported database type: {db_type}")
        if not config.get("database"):
            raise ValueError("Connection config requires a database")

        stored_config = {
            "host": config.get("host"),
            "port": config.get("port") or DEFAULT_PORTS.get(db_type),
            "database": config["database"],
            "user": config.get("user"),
            "encrypt": config.get("encrypt", True),
            "trust_server_certificate": config.get("trust_server_certificate", False),
            "connect_timeout_ms": config.get("connect_timeout_ms", 30000),
            "request_timeout_ms": config.get("request_timeout_ms", 30000),
        }

        profile = ConnectionProfile(
            name=name,
            db_type=db_type,
            encrypted_config=encrypt_value(json.dumps(stored_config)),
            encrypted_password=encrypt_value(password) if password else None,
            is_active=True,
            created_by=created_by,
        )
        with get_app_db_context(self._session_factory) as db:
            db.add(profile)
            db.flush()
            connection_id = profile.id

        logger.info("connection_stored", connection_id=connection_id, name=name, db_type=db_type)
        return connection_id

    def deactivate(self, connection_id: str) -> bool:
        """Soft-delete a connection profile. Returns False when it does not exist."""
        with get_app_db_context(self._session_factory) as db:
            profile = db.get(ConnectionProfile, connection_id)
            if profile is None:
                return False
            profile.is_active = False

        logger.info("connection_deactivated", connection_id=connection_id)
        return True
