import pytest

from querypanel.adapters.connectors import SqlAlchemyClient, to_named_binds
from querypanel.adapters.models import Dialect
from querypanel.adapters.postgres import PostgresAdapter
from querypanel.common.errors import ConfigurationError
from querypanel.engine.config import build_query_engine, load_attachments, resolve_env_refs


def _write(tmp_path, content):
    path = tmp_path / "databases.yaml"
    path.write_text(content)
    return path


class TestLoadAttachments:

    def test_loads_profiles(self, tmp_path, monkeypatch):
        # Arrange
        monkeypatch.setenv("APP_DB_URL", "sqlite://")
        path = _write(tmp_path, """
version: 1
databases:
  - name: app
    dialect: postgres
    url: ${env:APP_DB_URL}
    tenant_field_name: tenant_id
    allowed_tables: [users, sales.orders]
    tags: [prod]
""")

        # Act
        profiles = load_attachments(path)

        # Assert
        assert len(profiles) == 1
        profile = profiles[0]
        assert profile.url == "sqlite://"
        assert profile.dialect == Dialect.POSTGRES
        metadata = profile.to_metadata()
        assert metadata.enforce_tenant_isolation is True
        assert metadata.tags == ["prod"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_attachments(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_attachments(_write(tmp_path, "databases: [unclosed"))

    def test_invalid_schema(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Invalid"):
            load_attachments(_write(tmp_path, "databases:\n  - name: a\n    dialect: oracle\n"))

    def test_duplicate_names(self, tmp_path):
        path = _write(tmp_path, """
databases:
  - {name: a, dialect: postgres, url: "sqlite://"}
  - {name: a, dialect: postgres, url: "sqlite://"}
""")
        with pytest.raises(ConfigurationError, match="Duplicate database names"):
            load_attachments(path)


def test_resolve_env_refs(monkeypatch):
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.delenv("UNSET_VAR", raising=False)

    assert resolve_env_refs({"a": ["${env:DB_HOST}", 1], "b": "plain"}) == {"a": ["db.internal", 1], "b": "plain"}
    with pytest.raises(ConfigurationError, match="UNSET_VAR"):
        resolve_env_refs("${env:UNSET_VAR}")


class TestBuildQueryEngine:

    def test_attaches_relational_profiles(self, tmp_path):
        path = _write(tmp_path, """
databases:
  - {name: app, dialect: postgres, url: "sqlite://", allowed_tables: [users], default_schema: main}
""")

        engine = build_query_engine(load_attachments(path))

        adapter = engine.get_database("app")
        assert isinstance(adapter, PostgresAdapter)
        assert adapter.allowed_tables.keys() == ["main.users"]
        assert engine.default_database == "app"

    def test_columnar_profiles_are_rejected(self, tmp_path):
        path = _write(tmp_path, "databases:\n  - {name: ch, dialect: clickhouse, url: 'http://ch'}\n")
        with pytest.raises(ConfigurationError, match="client function"):
            build_query_engine(load_attachments(path))

    def test_missing_url(self, tmp_path):
        path = _write(tmp_path, "databases:\n  - {name: app, dialect: postgres}\n")
        with pytest.raises(ConfigurationError, match="no url"):
            build_query_engine(load_attachments(path))


class TestSqlAlchemyClient:

    def test_executes_positional_params(self):
        client = SqlAlchemyClient.from_url("sqlite://")

        result = client("SELECT $1 AS a, $2 AS b", [1, "x"])

        assert result.fields == ["a", "b"]
        assert result.rows == [{"a": 1, "b": "x"}]
        client.close()

    def test_statement_without_rows(self):
        client = SqlAlchemyClient.from_url("sqlite://")
        assert client("CREATE TABLE t (id INTEGER)").rows == []

    def test_adapter_round_trip_over_sqlite(self):
        adapter = PostgresAdapter(SqlAlchemyClient.from_url("sqlite://"))

        result = adapter.execute("SELECT $1 AS name", {"1": "acme"})

        assert result.rows == [{"name": "acme"}]
        assert result.fields == ["name"]

    @pytest.mark.parametrize("url", ["", "not-a-url"])
    def test_invalid_url(self, url):
        with pytest.raises(ConfigurationError):
            SqlAlchemyClient.from_url(url)


def test_to_named_binds():
    assert to_named_binds("SELECT $2, $1", ["a", "b"]) == ("SELECT :p2, :p1", {"p2": "b", "p1": "a"})
    with pytest.raises(ValueError, match=r"\$3"):
        to_named_binds("SELECT $3", ["a"])


@pytest.mark.parametrize(
    "sql, expected",
    [
        ("SELECT '$1' AS lit, $1 AS v", "SELECT '$1' AS lit, :p1 AS v"),
        ("SELECT 'it''s $1', $1", "SELECT 'it''s $1', :p1"),
        ('SELECT "$1" FROM t WHERE a = $1', 'SELECT "$1" FROM t WHERE a = :p1'),
        ("SELECT $1 -- compare with $2\n", "SELECT :p1 -- compare with $2\n"),
        ("SELECT /* $2 */ $1", "SELECT /* $2 */ :p1"),
        ("SELECT $$ costs $2 $$, $1", "SELECT $$ costs $2 $$, :p1"),
        ("SELECT $body$ $2 $body$, $1", "SELECT $body$ $2 $body$, :p1"),
    ],
)
def test_to_named_binds_leaves_quoted_text_alone(sql, expected):
    # Act
    statement, binds = to_named_binds(sql, ["x"])

    # Assert
    assert statement == expected
    assert binds == {"p1": "x"}
