import pytest

from querypanel.adapters.models import Dialect
from querypanel.common.errors import ConfigurationError
from querypanel.sql.tenant import TenantConfig, apply_tenant_isolation, escape_literal

POSTGRES_TENANT = TenantConfig(dialect=Dialect.POSTGRES, field_name="tenant_id")
CLICKHOUSE_TENANT = TenantConfig(dialect=Dialect.CLICKHOUSE, field_name="tenant_id", field_type="String")


class TestRelationalRewrite:

    def test_appends_where_clause(self):
        result = apply_tenant_isolation("SELECT * FROM users", {}, POSTGRES_TENANT, "t-123")
        assert result.sql == "SELECT * FROM users WHERE tenant_id = 't-123'"
        assert result.params == {}

    def test_splices_into_existing_where(self):
        result = apply_tenant_isolation("SELECT * FROM users WHERE active = true", {}, POSTGRES_TENANT, "t-123")
        assert result.sql == "SELECT * FROM users WHERE tenant_id = 't-123' AND active = true"

    def test_preserves_where_casing(self):
        result = apply_tenant_isolation("select * from users where active", {}, POSTGRES_TENANT, "t-123")
        assert result.sql == "select * from users where tenant_id = 't-123' AND active"

    def test_keeps_trailing_terminator(self):
        result = apply_tenant_isolation("SELECT * FROM users;  ", {}, POSTGRES_TENANT, "t-1")
        assert result.sql == "SELECT * FROM users WHERE tenant_id = 't-1';"

    def test_escapes_single_quotes(self):
        result = apply_tenant_isolation("SELECT * FROM users", {}, POSTGRES_TENANT, "o'brien")
        assert result.sql == "SELECT * FROM users WHERE tenant_id = 'o''brien'"

    def test_rejects_nul_in_tenant_id(self):
        with pytest.raises(ConfigurationError):
            apply_tenant_isolation("SELECT * FROM users", {}, POSTGRES_TENANT, "t\x00")

    def test_binds_late_bound_slot(self):
        params = {"1": "<tenant_id>"}
        result = apply_tenant_isolation("SELECT * FROM users WHERE tenant_id = $1", params, POSTGRES_TENANT, "t-9")
        assert result.sql == "SELECT * FROM users WHERE tenant_id = $1"
        assert result.params == {"1": "<tenant_id>", "tenant_id": "t-9"}


class TestColumnarRewrite:

    def test_appends_typed_placeholder_and_binds_param(self):
        result = apply_tenant_isolation("SELECT * FROM events", {"limit": 10}, CLICKHOUSE_TENANT, "t-123")
        assert result.sql.endswith("WHERE tenant_id = {tenant_id:String}")
        assert result.params == {"limit": 10, "tenant_id": "t-123"}

    def test_custom_field_type(self):
        tenant = TenantConfig(dialect=Dialect.CLICKHOUSE, field_name="org", field_type="UInt64")
        result = apply_tenant_isolation("SELECT * FROM events", None, tenant, "42")
        assert result.sql == "SELECT * FROM events WHERE org = {org:UInt64}"

    def test_binds_param_even_when_field_already_present(self):
        sql = "SELECT * FROM events WHERE tenant_id = {tenant_id:String}"
        result = apply_tenant_isolation(sql, {}, CLICKHOUSE_TENANT, "t-1")
        assert result.sql == sql
        assert result.params == {"tenant_id": "t-1"}


class TestNoRewrite:

    @pytest.mark.parametrize("tenant", [
        None,
        TenantConfig(dialect=Dialect.POSTGRES),
        TenantConfig(dialect=Dialect.POSTGRES, field_name="tenant_id", enforce=False),
    ])
    def test_inactive_isolation_returns_input(self, tenant):
        result = apply_tenant_isolation("SELECT * FROM users", {"a": 1}, tenant, "t-1")
        assert result.sql == "SELECT * FROM users"
        assert result.params == {"a": 1}

    def test_field_mentioned_case_insensitively(self):
        sql = "SELECT * FROM users WHERE TENANT_ID = 'x'"
        assert apply_tenant_isolation(sql, {}, POSTGRES_TENANT, "t-1").sql == sql

    def test_idempotent(self):
        once = apply_tenant_isolation("SELECT * FROM users WHERE a = 1", {}, POSTGRES_TENANT, "t-1")
        twice = apply_tenant_isolation(once.sql, once.params, POSTGRES_TENANT, "t-1")
        assert twice.sql == once.sql
        assert twice.params == once.params


def test_does_not_mutate_caller_params():
    params = {"limit": 5}
    result = apply_tenant_isolation("SELECT * FROM events", params, CLICKHOUSE_TENANT, "t-1")
    assert params == {"limit": 5}
    assert result.params is not params


def test_empty_tenant_id_is_rejected_when_active():
    with pytest.raises(ConfigurationError, match="tenant id is required"):
        apply_tenant_isolation("SELECT * FROM users", {}, POSTGRES_TENANT, "")


def test_enforce_defaults_to_active():
    assert TenantConfig(dialect=Dialect.POSTGRES, field_name="t").is_active
    assert not TenantConfig(dialect=Dialect.POSTGRES, field_name=None, enforce=True).is_active


def test_escape_literal():
    assert escape_literal("a'b''c") == "a''b''''c"


class TestCommentsAndLiterals:

    def test_predicate_goes_before_trailing_line_comment(self):
        result = apply_tenant_isolation("SELECT * FROM orders -- all orders", {}, POSTGRES_TENANT, "t-1")
        assert result.sql == "SELECT * FROM orders WHERE tenant_id = 't-1' -- all orders"

    def test_predicate_goes_before_trailing_block_comment(self):
        result = apply_tenant_isolation("SELECT * FROM orders; /* done */", {}, POSTGRES_TENANT, "t-1")
        assert result.sql == "SELECT * FROM orders WHERE tenant_id = 't-1'; /* done */"

    def test_where_inside_leading_comment_is_ignored(self):
        sql = "-- where clause intentionally omitted\nSELECT * FROM orders"
        result = apply_tenant_isolation(sql, {}, POSTGRES_TENANT, "t-1")
        assert result.sql == "-- where clause intentionally omitted\nSELECT * FROM orders WHERE tenant_id = 't-1'"

    def test_where_inside_string_literal_is_ignored(self):
        # Arrange
        sql = "SELECT 'where' AS label FROM events"

        # Act
        result = apply_tenant_isolation(sql, {}, CLICKHOUSE_TENANT, "t-1")

        # Assert
        assert result.sql == "SELECT 'where' AS label FROM events WHERE tenant_id = {tenant_id:String}"
        assert result.params == {"tenant_id": "t-1"}

    def test_splices_into_real_where_after_literal(self):
        sql = "SELECT 'where' AS label FROM orders WHERE total > 5"
        result = apply_tenant_isolation(sql, {}, POSTGRES_TENANT, "t-1")
        assert result.sql == "SELECT 'where' AS label FROM orders WHERE tenant_id = 't-1' AND total > 5"

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM orders -- tenant_id filter is added later",
        "SELECT 'tenant_id' AS note FROM orders",
    ])
    def test_field_named_only_in_comment_or_literal_still_scopes(self, sql):
        result = apply_tenant_isolation(sql, {}, POSTGRES_TENANT, "t-1")
        assert "WHERE tenant_id = 't-1'" in result.sql
