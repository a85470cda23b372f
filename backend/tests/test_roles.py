"""
Tests for role policies and statement authorization
"""
import pytest

from sqlbroker.core.roles import (
    Role,
    StatementKind,
    ROLE_PERMISSIONS,
    authorize,
    classify,
    get_role_policy,
    is_valid_role,
    longest_query_timeout_ms,
)


class TestRolePolicies:
    """Test the fixed role table"""

    @pytest.mark.parametrize("role,max_rows,timeout_ms", [
        ("VIEWER", 1000, 30000),
        ("ANALYST", 5000, 60000),
        ("DEVELOPER", 10000, 120000),
        ("ADMIN", 50000, 300000),
    ])
    def test_limits(self, role, max_rows, timeout_ms):
        policy = get_role_policy(role)
        assert policy.max_rows == max_rows
        assert policy.query_timeout_ms == timeout_ms
        assert policy.timeout_seconds == timeout_ms / 1000

    def test_unknown_role_gets_viewer_policy(self):
        """Unknown or missing roles fall back to the most restrictive policy"""
        assert get_role_policy("SUPERUSER") is ROLE_PERMISSIONS[Role.VIEWER]
        assert get_role_policy(None) is ROLE_PERMISSIONS[Role.VIEWER]
        assert get_role_policy("viewer") is ROLE_PERMISSIONS[Role.VIEWER]

    def test_is_valid_role(self):
        assert is_valid_role("ADMIN")
        assert is_valid_role(Role.ANALYST)
        assert not is_valid_role("admin")
        assert not is_valid_role(None)

    def test_only_admin_sees_all_history(self):
        assert get_role_policy("ADMIN").can_view_all_history
        assert get_role_policy("ADMIN").can_manage_connections
        for role in ("VIEWER", "ANALYST", "DEVELOPER"):
            assert not get_role_policy(role).can_view_all_history
            assert get_role_policy(role).can_cancel_queries

    def test_longest_timeout(self):
        assert longest_query_timeout_ms() == 300000


class TestClassify:
    """Test leading-keyword classification"""

    @pytest.mark.parametrize("statement,kind,keyword", [
        ("SELECT TOP 10 * FROM T", StatementKind.READ, "SELECT"),
        ("select * from t", StatementKind.READ, "SELECT"),
        ("INSERT INTO t VALUES (1)", StatementKind.WRITE, "INSERT"),
        ("UPDATE t SET a = 1", StatementKind.WRITE, "UPDATE"),
        ("DELETE FROM t", StatementKind.DELETE, "DELETE"),
        ("MERGE INTO t USING s ON 1 = 1", StatementKind.DELETE, "MERGE"),
        ("DROP TABLE T", StatementKind.DEFINITION, "DROP"),
        ("truncate table t", StatementKind.DEFINITION, "TRUNCATE"),
        ("EXEC sp_who", StatementKind.DEFINITION, "EXEC"),
        ("GRANT SELECT ON t TO bob", StatementKind.DEFINITION, "GRANT"),
        ("WITH c AS (SELECT 1 AS x) SELECT x FROM c", StatementKind.OTHER, "WITH"),
    ])
    def test_keywords(self, statement, kind, keyword):
        assert classify(statement) == (kind, keyword)

    def test_leading_whitespace_and_comments_skipped(self):
        statement = "\n  -- nightly report\n/* owner: finance */\n  select 1"
        assert classify(statement) == (StatementKind.READ, "SELECT")

    def test_empty_statement(self):
        assert classify("") == (StatementKind.OTHER, None)
        assert classify("   -- only a comment") == (StatementKind.OTHER, None)


class TestAuthorize:
    """Test role-based statement authorization"""

    @pytest.mark.parametrize("role,statement", [
        ("VIEWER", "SELECT 1"),
        ("ANALYST", "SELECT 1"),
        ("ANALYST", "INSERT INTO t VALUES (1)"),
        ("ANALYST", "UPDATE t SET a = 1"),
        ("DEVELOPER", "DELETE FROM t"),
        ("DEVELOPER", "MERGE INTO t USING s ON 1 = 1"),
        ("ADMIN", "DROP TABLE t"),
        ("ADMIN", "EXEC sp_who"),
        ("ADMIN", "WITH c AS (SELECT 1 AS x) SELECT x FROM c"),
    ])
    def test_allowed(self, role, statement):
        decision = authorize(role, statement)
        assert decision.allowed
        assert decision.reason is None

    @pytest.mark.parametrize("role,statement", [
        ("VIEWER", "INSERT INTO t VALUES (1)"),
        ("VIEWER", "UPDATE t SET a = 1"),
        ("VIEWER", "DELETE FROM t"),
        ("ANALYST", "DELETE FROM t"),
        ("ANALYST", "MERGE INTO t USING s ON 1 = 1"),
        ("DEVELOPER", "WITH c AS (SELECT 1 AS x) SELECT x FROM c"),
        ("VIEWER", ""),
    ])
    def test_denied_generic_reason(self, role, statement):
        decision = authorize(role, statement)
        assert not decision.allowed
        assert decision.reason == f"Role {role} is not permitted to execute this type of query"

    @pytest.mark.parametrize("role", ["VIEWER", "ANALYST", "DEVELOPER"])
    @pytest.mark.parametrize("keyword", ["CREATE", "ALTER", "DROP", "TRUNCATE", "GRANT", "REVOKE", "EXECUTE", "EXEC"])
    def test_definition_denied_names_keyword(self, role, keyword):
        decision = authorize(role, f"{keyword.lower()} something")
        assert not decision.allowed
        assert decision.kind == StatementKind.DEFINITION
        assert decision.reason == f"Role {role} is not permitted to execute {keyword} statements"

    def test_viewer_drop_table(self):
        decision = authorize("VIEWER", "DROP TABLE T")
        assert decision.reason == "Role VIEWER is not permitted to execute DROP statements"

    def test_enum_role_named_in_reason(self):
        decision = authorize(Role.VIEWER, "DROP TABLE T")
        assert decision.reason == "Role VIEWER is not permitted to execute DROP statements"
