from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Literal, Optional, Tuple

from secretsync.app.associations import AssociationTable
from secretsync.core.errors import REMOTE_ERRORS, MissingRemoteSecretError, MountNotFoundError
from secretsync.core.value import digest_text
from secretsync.provider.factory import ClientFactory, build_client
from secretsync.provider.naming import render_names
from secretsync.provider.protocol import DestinationClientProtocol
from secretsync.registry.destinations import DestinationKey, DestinationRegistry, TypeLike, parse_type
from secretsync.schema.models import Association, DestinationType, SyncStatus
from secretsync.store.kv import KVStore, SecretEvent

Action = Literal["reconcile", "purge"]


@dataclass(frozen=True)
class SyncOperation:
    # reconcile: make the destination match the store's current value (push or delete)
    # purge: remove destination copies of a detached association
    action: Action
    association: Association
    mount: str
    secret_name: str

    @property
    def ident(self) -> Tuple[str, int, str]:
        # a re-created association is a different object with the same key
        return (self.action, id(self.association), self.secret_name)


class SyncEngine:
    """Propagates store changes to associated destinations.

    Store events and association changes enqueue operations; ``flush`` drains
    them in FIFO order. Destination failures are recorded on the association
    and never raised from ``flush``.
    """

    def __init__(
        self,
        store: KVStore,
        registry: DestinationRegistry,
        associations: AssociationTable,
        factories: Optional[Dict[DestinationType, ClientFactory]] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.associations = associations
        self._factories = factories
        self._queue: Deque[SyncOperation] = deque()
        self._queued: set = set()
        self._clients: Dict[DestinationKey, DestinationClientProtocol] = {}
        self._log = logging.getLogger("secretsync.engine")
        store.subscribe(self._on_event)
        registry.on_change(self._evict)

    # queueing

    def _enqueue(self, op: SyncOperation) -> None:
        if op.ident in self._queued:
            return
        self._queued.add(op.ident)
        self._queue.append(op)

    def _on_event(self, event: SecretEvent) -> None:
        for assoc in self.associations.matching(event.mount, event.name):
            assoc.mark(SyncStatus.PENDING, assoc.last_error)
            self._enqueue(SyncOperation("reconcile", assoc, event.mount, event.name))

    def _covered_secrets(self, assoc: Association) -> List[str]:
        if assoc.secret_name is not None:
            return [assoc.secret_name]
        return self.store.list(assoc.mount)

    def pending(self) -> int:
        return len(self._queue)

    def has_pending(self, key: DestinationKey) -> bool:
        return any(op.association.key[:2] == key for op in self._queue)

    # association lifecycle

    def associate(
        self, type_: TypeLike, name: str, mount: str, secret_name: Optional[str] = None
    ) -> Association:
        dest = self.registry.get(type_, name)
        if not self.store.has_mount(mount):
            raise MountNotFoundError(mount)
        assoc, created = self.associations.set(dest.type, dest.name, mount, secret_name)
        secrets = self._covered_secrets(assoc)
        if created:
            self._log.info(
                "association set: destination=%s/%s, mount=%s, secret=%s",
                dest.type.value,
                dest.name,
                assoc.mount,
                assoc.secret_name or "*",
            )
        for secret in secrets:
            self._enqueue(SyncOperation("reconcile", assoc, assoc.mount, secret))
        if not secrets or all(self.store.read_current(assoc.mount, s) is None for s in secrets):
            if not assoc.remote_names:
                assoc.mark(SyncStatus.UNSYNCED)
        return assoc

    def unassociate(
        self, type_: TypeLike, name: str, mount: str, secret_name: Optional[str] = None
    ) -> Association:
        dtype = parse_type(type_)
        assoc = self.associations.get(dtype, name, mount, secret_name)
        self.associations.remove(assoc.key)
        self._log.info(
            "association removed: destination=%s/%s, mount=%s, secret=%s",
            dtype.value,
            name,
            assoc.mount,
            assoc.secret_name or "*",
        )
        for secret in sorted(assoc.remote_names):
            self._enqueue(SyncOperation("purge", assoc, assoc.mount, secret))
        return assoc

    def resync(self, type_: TypeLike, name: str) -> int:
        """Force a push of every associated secret of a destination."""
        dest = self.registry.get(type_, name)
        count = 0
        for assoc in self.associations.for_destination(dest.type, dest.name):
            assoc.remote_digests.clear()
            for secret in self._covered_secrets(assoc):
                self._enqueue(SyncOperation("reconcile", assoc, assoc.mount, secret))
                count += 1
        return count

    def status(self, type_: TypeLike, name: str) -> List[Association]:
        dest = self.registry.get(type_, name)
        return self.associations.for_destination(dest.type, dest.name)

    # draining

    def flush(self) -> int:
        processed = 0
        while self._queue:
            op = self._queue.popleft()
            self._queued.discard(op.ident)
            processed += 1
            try:
                if op.action == "purge":
                    self._purge(op.association, op.secret_name)
                else:
                    self._reconcile(op.association, op.mount, op.secret_name)
            except REMOTE_ERRORS as exc:
                op.association.mark(SyncStatus.SYNC_FAILED, str(exc))
                if self._log.isEnabledFor(logging.ERROR):
                    self._log.error(
                        "sync failed: destination=%s/%s, mount=%s, secret=%s, error=%s",
                        op.association.destination_type.value,
                        op.association.destination_name,
                        op.mount,
                        op.secret_name,
                        exc.__class__.__name__,
                    )
        return processed

    def _reconcile(self, assoc: Association, mount: str, secret: str) -> None:
        if self.associations.lookup(assoc.key) is not assoc:
            # association was removed after this operation was queued
            return
        data = self.store.read_current(mount, secret)
        if data is None:
            self._purge(assoc, secret)
            return
        dest = self.registry.get(assoc.destination_type, assoc.destination_name)
        client = self._client(dest.key)
        names = render_names(dest, mount, secret, data.keys())
        previous = set(assoc.remote_names.get(secret, []))
        produced = set(previous)
        pushed = 0
        for remote, key in names.items():
            payload = data.to_json() if key is None else data.get(key)
            digest = digest_text(payload)
            if assoc.remote_digests.get(remote) == digest:
                continue
            client.put(remote, payload, tags=dest.custom_tags)
            pushed += 1
            assoc.remote_digests[remote] = digest
            produced.add(remote)
            assoc.remote_names[secret] = sorted(produced)
        for remote in sorted(previous - set(names)):
            self._release(client, assoc, remote)
            assoc.remote_digests.pop(remote, None)
        assoc.remote_names[secret] = sorted(names)
        assoc.mark(SyncStatus.SYNCED)
        self._log.debug(
            "synced: destination=%s/%s, secret=%s/%s, pushed=%d",
            dest.type.value,
            dest.name,
            mount,
            secret,
            pushed,
        )

    def _purge(self, assoc: Association, secret: str) -> None:
        names = assoc.remote_names.get(secret, [])
        if names:
            client = self._client((assoc.destination_type, assoc.destination_name))
            for remote in names:
                self._release(client, assoc, remote)
                assoc.remote_digests.pop(remote, None)
            self._log.debug(
                "purged: destination=%s/%s, secret=%s/%s, removed=%d",
                assoc.destination_type.value,
                assoc.destination_name,
                assoc.mount,
                secret,
                len(names),
            )
        assoc.remote_names.pop(secret, None)
        if self.associations.lookup(assoc.key) is assoc:
            assoc.mark(SyncStatus.SYNCED if assoc.remote_names else SyncStatus.UNSYNCED)

    def _release(self, client: DestinationClientProtocol, assoc: Association, remote: str) -> None:
        if self._produced_elsewhere(assoc, remote):
            self._log.debug("remote secret kept for another association: %s", remote)
            return
        self._delete_remote(client, remote)

    def _produced_elsewhere(self, assoc: Association, remote: str) -> bool:
        for other in self.associations.for_destination(assoc.destination_type, assoc.destination_name):
            if other is assoc:
                continue
            if any(remote in names for names in other.remote_names.values()):
                return True
        return False

    def _delete_remote(self, client: DestinationClientProtocol, remote: str) -> None:
        try:
            client.delete(remote)
        except MissingRemoteSecretError:
            self._log.debug("remote secret already absent: %s", remote)

    # clients

    def _client(self, key: DestinationKey) -> DestinationClientProtocol:
        client = self._clients.get(key)
        if client is None:
            dest = self.registry.get(*key)
            client = build_client(dest, self._factories)
            self._clients[key] = client
        return client

    def client_for(self, type_: TypeLike, name: str) -> DestinationClientProtocol:
        return self._client((parse_type(type_), name))

    def _evict(self, key: DestinationKey) -> None:
        self._clients.pop(key, None)

    def reset(self) -> None:
        """Drop queued operations and cached clients."""
        self._queue.clear()
        self._queued.clear()
        self._clients.clear()
