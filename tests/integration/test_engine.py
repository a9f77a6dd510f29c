import json

import pytest

pytestmark = pytest.mark.integration


class _FlakyDestination:
    def __init__(self) -> None:
        from secretsync.provider.memory import InMemoryDestination

        self.inner = InMemoryDestination()
        self.fail = True

    def put(self, name, value, tags=None):
        from secretsync.core.errors import RemoteUnavailableError

        if self.fail:
            raise RemoteUnavailableError("destination down")
        self.inner.put(name, value, tags)

    def delete(self, name):
        self.inner.delete(name)


def _wire(client=None):
    from secretsync.app.associations import AssociationTable
    from secretsync.app.engine import SyncEngine
    from secretsync.provider.memory import InMemoryDestination
    from secretsync.registry.destinations import DestinationRegistry
    from secretsync.schema.models import DestinationType
    from secretsync.store.kv import KVStore

    dest = client or InMemoryDestination()
    store = KVStore()
    store.enable_mount("kv")
    table = AssociationTable()
    registry = DestinationRegistry(in_use=table.has_destination)
    engine = SyncEngine(store, registry, table, {DestinationType.IN_MEMORY: lambda d: dest})
    return store, registry, engine, dest


def test_put_update_delete_propagate_to_destination():
    from secretsync.schema.models import SyncStatus

    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d", custom_tags={"owner": "platform"})
    store.put("kv", "db", {"user": "admin", "password": "p1"})

    assoc = engine.associate("in-memory", "d", "kv", "db")
    assert assoc.sync_status is SyncStatus.PENDING
    assert engine.flush() == 1
    assert assoc.sync_status is SyncStatus.SYNCED
    assert json.loads(dest.value("vault-kv-db")) == {"user": "admin", "password": "p1"}
    assert dest.secrets["vault-kv-db"][1] == {"owner": "platform"}

    store.put("kv", "db", {"user": "admin", "password": "p2"})
    assert assoc.sync_status is SyncStatus.PENDING
    engine.flush()
    assert json.loads(dest.value("vault-kv-db"))["password"] == "p2"

    store.delete("kv", "db")
    engine.flush()
    assert "vault-kv-db" not in dest.secrets
    assert assoc.sync_status is SyncStatus.UNSYNCED
    assert assoc.remote_names == {}


def test_unchanged_value_is_not_pushed_again():
    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d")
    store.put("kv", "db", {"a": "1"})
    engine.associate("in-memory", "d", "kv", "db")
    engine.flush()

    # new version with identical data
    store.put("kv", "db", {"a": "1"})
    engine.flush()

    assert dest.calls == [("put", "vault-kv-db")]


def test_queue_coalesces_repeated_events():
    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d")
    engine.associate("in-memory", "d", "kv", "db")
    for i in range(5):
        store.put("kv", "db", {"n": str(i)})

    assert engine.pending() == 1
    engine.flush()
    assert json.loads(dest.value("vault-kv-db")) == {"n": "4"}


def test_secret_key_granularity_removes_dropped_keys():
    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d", granularity="secret-key")
    store.put("kv", "db", {"user": "admin", "password": "p"})
    engine.associate("in-memory", "d", "kv", "db")
    engine.flush()
    assert dest.value("vault-kv-db-user") == "admin"
    assert dest.value("vault-kv-db-password") == "p"

    store.put("kv", "db", {"user": "admin"})
    engine.flush()

    assert sorted(dest.secrets) == ["vault-kv-db-user"]
    assoc = engine.status("in-memory", "d")[0]
    assert assoc.remote_names == {"db": ["vault-kv-db-user"]}


def test_mount_wide_association_syncs_every_secret():
    from secretsync.schema.models import SyncStatus

    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d")
    store.put("kv", "a", {"x": "1"})
    store.put("kv", "b", {"x": "2"})

    assoc = engine.associate("in-memory", "d", "kv")
    engine.flush()
    store.put("kv", "c", {"x": "3"})
    engine.flush()

    assert sorted(dest.secrets) == ["vault-kv-a", "vault-kv-b", "vault-kv-c"]

    store.delete_metadata("kv", "a")
    engine.flush()
    assert sorted(dest.secrets) == ["vault-kv-b", "vault-kv-c"]
    assert assoc.sync_status is SyncStatus.SYNCED


def test_unassociate_purges_destination_copies():
    from secretsync.core.errors import AssociationNotFoundError

    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d")
    store.put("kv", "db", {"a": "1"})
    engine.associate("in-memory", "d", "kv", "db")
    engine.flush()

    engine.unassociate("in-memory", "d", "kv", "db")
    # events after removal are ignored
    store.put("kv", "db", {"a": "2"})
    engine.flush()

    assert dest.secrets == {}
    assert engine.status("in-memory", "d") == []
    with pytest.raises(AssociationNotFoundError):
        engine.unassociate("in-memory", "d", "kv", "db")


def test_reassociating_before_flush_still_syncs():
    from secretsync.schema.models import SyncStatus

    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d")
    store.put("kv", "db", {"a": "1"})

    engine.associate("in-memory", "d", "kv", "db")
    engine.unassociate("in-memory", "d", "kv", "db")
    again = engine.associate("in-memory", "d", "kv", "db")
    engine.flush()

    assert engine.pending() == 0
    assert again.sync_status is SyncStatus.SYNCED
    assert again.remote_names == {"db": ["vault-kv-db"]}
    assert dest.value("vault-kv-db") == '{"a":"1"}'


def test_overlapping_associations_keep_shared_remote_secret():
    from secretsync.schema.models import SyncStatus

    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d")
    store.put("kv", "db", {"a": "1"})
    wide = engine.associate("in-memory", "d", "kv")
    engine.associate("in-memory", "d", "kv", "db")
    engine.flush()

    engine.unassociate("in-memory", "d", "kv", "db")
    engine.flush()
    assert dest.value("vault-kv-db") == '{"a":"1"}'
    assert wide.sync_status is SyncStatus.SYNCED
    assert wide.remote_names == {"db": ["vault-kv-db"]}

    # same value again: skipped by digest, copy must still be there
    store.put("kv", "db", {"a": "1"})
    engine.flush()
    assert "vault-kv-db" in dest.secrets

    store.delete("kv", "db")
    engine.flush()
    assert "vault-kv-db" not in dest.secrets


def test_associate_without_secret_is_unsynced_until_written():
    from secretsync.core.errors import DestinationNotFoundError, MountNotFoundError
    from secretsync.schema.models import SyncStatus

    store, registry, engine, dest = _wire()
    registry.write("in-memory", "d")

    assoc = engine.associate("in-memory", "d", "kv", "later")
    engine.flush()
    assert assoc.sync_status is SyncStatus.UNSYNCED
    assert dest.secrets == {}

    store.put("kv", "later", {"a": "1"})
    engine.flush()
    assert assoc.sync_status is SyncStatus.SYNCED

    with pytest.raises(MountNotFoundError):
        engine.associate("in-memory", "d", "nope", "x")
    with pytest.raises(DestinationNotFoundError):
        engine.associate("in-memory", "missing", "kv", "x")


def test_remote_failure_is_recorded_and_resync_recovers():
    from secretsync.schema.models import SyncStatus

    flaky = _FlakyDestination()
    store, registry, engine, _ = _wire(flaky)
    registry.write("in-memory", "d")
    store.put("kv", "db", {"a": "1"})
    assoc = engine.associate("in-memory", "d", "kv", "db")

    engine.flush()
    assert assoc.sync_status is SyncStatus.SYNC_FAILED
    assert "destination down" in assoc.last_error

    flaky.fail = False
    assert engine.resync("in-memory", "d") == 1
    engine.flush()
    assert assoc.sync_status is SyncStatus.SYNCED
    assert assoc.last_error is None
    assert flaky.inner.value("vault-kv-db") == '{"a":"1"}'


def test_destination_update_evicts_cached_client():
    from secretsync.app.associations import AssociationTable
    from secretsync.app.engine import SyncEngine
    from secretsync.provider.memory import InMemoryDestination
    from secretsync.registry.destinations import DestinationRegistry
    from secretsync.schema.models import DestinationType
    from secretsync.store.kv import KVStore

    built = []

    def _factory(dest):
        client = InMemoryDestination()
        built.append(client)
        return client

    store = KVStore()
    store.enable_mount("kv")
    table = AssociationTable()
    registry = DestinationRegistry()
    engine = SyncEngine(store, registry, table, {DestinationType.IN_MEMORY: _factory})
    registry.write("in-memory", "d")

    first = engine.client_for("in-memory", "d")
    assert engine.client_for("in-memory", "d") is first
    registry.write("in-memory", "d", custom_tags={"a": "b"})
    assert engine.client_for("in-memory", "d") is not first
    assert len(built) == 2
