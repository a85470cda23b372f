"""
Database Initialization Script
Creates metadata tables and optionally registers a target connection

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --name reporting --db-type mssql --host sql01 \
        --database Sales --user broker --password secret
"""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlbroker.database import app_engine, init_models
from sqlbroker.connections.vault import CredentialVault, ASYNC_DRIVERS


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Initialize the SQL broker metadata store")
    parser.add_argument("--name", help="Register a target connection with this display name")
    parser.add_argument("--db-type", default="mssql", choices=sorted(ASYNC_DRIVERS))
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--database", help="Target database name (file path for sqlite)")
    parser.add_argument("--user")
    parser.add_argument("--password")
    parser.add_argument("--no-encrypt", action="store_true", help="Disable TLS to the target")
    parser.add_argument("--trust-server-certificate", action="store_true")
    parser.add_argument("--connect-timeout-ms", type=int, default=30000)
    parser.add_argument("--created-by", default="init_db")
    return parser.parse_args(argv)


def init_database(args) -> int:
    """Initialize database with tables and an optional target connection."""
    print(f"Metadata store: {app_engine.url.render_as_string(hide_password=True)}")

    try:
        init_models()
        print("✓ Tables created")
    except Exception as e:
        print(f"❌ Database initialization failed: {str(e)}")
        return 1

    if not args.name:
        print("\n✅ Database initialization complete!")
        return 0

    if not args.database:
        print("❌ --database is required when registering a connection")
        return 1

    try:
        connection_id = CredentialVault().store(
            name=args.name,
            config={
                "host": args.host,
                "port": args.port,
                "database": args.database,
                "user": args.user,
                "encrypt": not args.no_encrypt,
                "trust_server_certificate": args.trust_server_certificate,
                "connect_timeout_ms": args.connect_timeout_ms,
            },
            password=args.password,
            db_type=args.db_type,
            created_by=args.created_by
        )
    except ValueError as e:
        print(f"❌ Invalid connection: {str(e)}")
        return 1

    print(f"✓ Connection '{args.name}' registered")
    print(f"\n🔗 Connection ID: {connection_id}")
    print("\n✅ Database initialization complete!")
    return 0


if __name__ == "__main__":
    sys.exit(init_database(parse_args()))
