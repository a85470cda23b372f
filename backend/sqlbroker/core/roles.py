"""
Role Policy - static per-role statement and resource limits
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple
import enum
import re


class Role(str, enum.Enum):
    """Closed set of user roles."""
    VIEWER = "VIEWER"
    ANALYST = "ANALYST"
    DEVELOPER = "DEVELOPER"
    ADMIN = "ADMIN"


class StatementKind(str, enum.Enum):
    """Coarse statement classification used by the role policy."""
    READ = "read"
    WRITE = "write"            # INSERT, UPDATE
    DELETE = "delete"          # DELETE, MERGE
    DEFINITION = "definition"  # DDL and administrative statements
    OTHER = "other"


KIND_KEYWORDS = {
    "SELECT": StatementKind.READ,
    "INSERT": StatementKind.WRITE,
    "UPDATE": StatementKind.WRITE,
    "DELETE": StatementKind.DELETE,
    "MERGE": StatementKind.DELETE,
    "CREATE": StatementKind.DEFINITION,
    "ALTER": StatementKind.DEFINITION,
    "DROP": StatementKind.DEFINITION,
    "TRUNCATE": StatementKind.DEFINITION,
    "GRANT": StatementKind.DEFINITION,
    "REVOKE": StatementKind.DEFINITION,
    "EXECUTE": StatementKind.DEFINITION,
    "EXEC": StatementKind.DEFINITION,
}

_LEADING_COMMENTS = re.compile(r'^(\s*(--[^\n]*(\n|$)|/\*.*?\*/))*\s*', re.DOTALL)
_LEADING_TOKEN = re.compile(r'[A-Z_]+')


@dataclass(frozen=True)
class RolePolicy:
    """Immutable rule set for one role."""
    role: Role
    allowed_kinds: FrozenSet[StatementKind] = field(default_factory=frozenset)
    allow_all: bool = False
    max_rows: int = 1000
    query_timeout_ms: int = 30000
    can_cancel_queries: bool = True
    can_view_history: bool = True
    can_view_all_history: bool = False
    can_manage_users: bool = False
    can_manage_connections: bool = False

    @property
    def timeout_seconds(self) -> float:
        return self.query_timeout_ms / 1000

    def permits(self, kind: StatementKind) -> bool:
        return self.allow_all or kind in self.allowed_kinds


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of checking a statement against a role policy."""
    allowed: bool
    kind: StatementKind
    keyword: Optional[str] = None
    reason: Optional[str] = None


ROLE_PERMISSIONS = {
    Role.VIEWER: RolePolicy(
        role=Role.VIEWER,
        allowed_kinds=frozenset({StatementKind.READ}),
        max_rows=1000,
        query_timeout_ms=30000,
    ),
    Role.ANALYST: RolePolicy(
        role=Role.ANALYST,
        allowed_kinds=frozenset({StatementKind.READ, StatementKind.WRITE}),
        max_rows=5000,
        query_timeout_ms=60000,
    ),
    Role.DEVELOPER: RolePolicy(
        role=Role.DEVELOPER,
        allowed_kinds=frozenset({StatementKind.READ, StatementKind.WRITE, StatementKind.DELETE}),
        max_rows=10000,
        query_timeout_ms=120000,
    ),
    Role.ADMIN: RolePolicy(
        role=Role.ADMIN,
        allow_all=True,
        max_rows=50000,
        query_timeout_ms=300000,
        can_view_all_history=True,
        can_manage_users=True,
        can_manage_connections=True,
    ),
}

_ROLE_NAMES = frozenset(r.value for r in Role)

# Unknown roles get the most restrictive policy
DEFAULT_POLICY = ROLE_PERMISSIONS[Role.VIEWER]


def is_valid_role(role: Optional[str]) -> bool:
    """Check whether role names one of the known roles."""
    return role in _ROLE_NAMES


def get_role_policy(role: Optional[str]) -> RolePolicy:
    """
    Look up the policy for a role.

    Args:
        role: Role name (case-sensitive, e.g. "ANALYST")

    Returns:
        RolePolicy for the role, or the VIEWER policy when the role is unknown
    """
    if not is_valid_role(role):
        return DEFAULT_POLICY
    return ROLE_PERMISSIONS[Role(role)]


def longest_query_timeout_ms() -> int:
    """Largest query timeout granted to any role."""
    return max(policy.query_timeout_ms for policy in ROLE_PERMISSIONS.values())


def classify(statement: str) -> Tuple[StatementKind, Optional[str]]:
    """
    Classify a statement by its leading keyword.

    Leading whitespace and comments are skipped. This is prefix matching,
    not parsing: a read-looking statement may still carry side effects
    further down.

    Returns:
        (kind, keyword) where keyword is the upper-cased leading token, or
        None when the statement has no leading word
    """
    normalized = _LEADING_COMMENTS.sub('', statement or '', count=1).upper()
    match = _LEADING_TOKEN.match(normalized)
    if not match:
        return StatementKind.OTHER, None

    keyword = match.group(0)
    return KIND_KEYWORDS.get(keyword, StatementKind.OTHER), keyword


def authorize(role: Optional[str], statement: str) -> AuthorizationDecision:
    """
    Decide whether a role may execute a statement.

    Args:
        role: Role name from the authenticated identity
        statement: Raw SQL text as submitted

    Returns:
        AuthorizationDecision; denials carry a user-facing reason
    """
    policy = get_role_policy(role)
    kind, keyword = classify(statement)

    if policy.permits(kind):
        return AuthorizationDecision(allowed=True, kind=kind, keyword=keyword)

    role_name = role.value if isinstance(role, Role) else role
    if kind == StatementKind.DEFINITION:
        reason = f"Role {role_name} is not permitted to execute {keyword} statements"
    else:
        reason = f"Role {role_name} is not permitted to execute this type of query"

    return AuthorizationDecision(allowed=False, kind=kind, keyword=keyword, reason=reason)
