import threading

import pytest
from unittest.mock import MagicMock

from querypanel.adapters.interfaces import DatabaseAdapter
from querypanel.adapters.models import Dialect
from querypanel.common.errors import ConfigurationError
from querypanel.engine.registry import AttachedDatabase, DatabaseRegistry


def _adapter(dialect=Dialect.POSTGRES):
    adapter = MagicMock(spec=DatabaseAdapter)
    adapter.get_dialect.return_value = dialect
    return adapter


def test_first_attached_is_default():
    registry = DatabaseRegistry()
    registry.attach(_adapter(), AttachedDatabase(name="a", dialect=Dialect.POSTGRES))
    registry.attach(_adapter(Dialect.CLICKHOUSE), AttachedDatabase(name="b", dialect=Dialect.CLICKHOUSE))

    assert registry.default_name == "a"
    assert registry.get().metadata.name == "a"
    assert registry.get("b").metadata.dialect == Dialect.CLICKHOUSE
    assert registry.names() == ["a", "b"]
    assert len(registry) == 2


def test_duplicate_name_is_rejected():
    registry = DatabaseRegistry()
    first = _adapter()
    registry.attach(first, AttachedDatabase(name="a", dialect=Dialect.POSTGRES))

    with pytest.raises(ConfigurationError, match="already attached"):
        registry.attach(_adapter(), AttachedDatabase(name="a", dialect=Dialect.POSTGRES))

    assert registry.get("a").adapter is first


def test_dialect_mismatch_is_rejected():
    registry = DatabaseRegistry()
    with pytest.raises(ConfigurationError, match="dialect"):
        registry.attach(_adapter(Dialect.CLICKHOUSE), AttachedDatabase(name="a", dialect=Dialect.POSTGRES))
    assert "a" not in registry


def test_lookup_errors():
    registry = DatabaseRegistry()
    with pytest.raises(ConfigurationError, match="No database attached"):
        registry.get()

    registry.attach(_adapter(), AttachedDatabase(name="a", dialect=Dialect.POSTGRES))
    with pytest.raises(ConfigurationError, match="'missing' not found. Attached: a"):
        registry.get("missing")


def test_concurrent_attach_keeps_every_entry():
    registry = DatabaseRegistry()

    def attach(i):
        registry.attach(_adapter(), AttachedDatabase(name=f"db{i}", dialect=Dialect.POSTGRES))

    threads = [threading.Thread(target=attach, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(registry) == 20


class TestAttachedDatabase:

    def test_enforcement_defaults_on_when_field_set(self):
        metadata = AttachedDatabase(name="a", dialect=Dialect.POSTGRES, tenant_field_name="tenant_id")
        assert metadata.enforce_tenant_isolation is True
        assert metadata.tenant_config().is_active

    def test_explicit_opt_out_is_kept(self):
        metadata = AttachedDatabase(
            name="a", dialect=Dialect.POSTGRES, tenant_field_name="tenant_id", enforce_tenant_isolation=False
        )
        assert metadata.enforce_tenant_isolation is False
        assert not metadata.tenant_config().is_active

    def test_no_field_means_no_enforcement(self):
        metadata = AttachedDatabase(name="a", dialect=Dialect.POSTGRES)
        assert metadata.enforce_tenant_isolation is None
        assert not metadata.tenant_config().is_active

    def test_is_immutable(self):
        metadata = AttachedDatabase(name="a", dialect=Dialect.POSTGRES)
        with pytest.raises(Exception):
            metadata.name = "b"
