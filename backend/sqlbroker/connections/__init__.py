"""
Connections Package - target database credentials and pooling
"""
from sqlbroker.connections.vault import CredentialVault, TargetDescriptor, PoolKey
from sqlbroker.connections.pool import TargetPool, StatementOutcome
from sqlbroker.connections.pool_registry import PoolRegistry, ConnectionTestResult

__all__ = [
    "CredentialVault",
    "TargetDescriptor",
    "PoolKey",
    "TargetPool",
    "StatementOutcome",
    "PoolRegistry",
    "ConnectionTestResult",
]
