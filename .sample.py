import json
import logging
import os

from secretsync import SecretSync, SecretSyncSettings
from secretsync.schema.models import DestinationType


def main() -> None:
    logging.basicConfig(level=logging.INFO)

    sync = SecretSync(SecretSyncSettings())

    # KV v2 mount and a first secret
    sync.enable_mount("demo-secrets")
    sync.kv_put("demo-secrets", "my-secret", {"foo": "bar"})

    # Destinations: real clouds when credentials are exported, otherwise in-memory
    targets = []
    if os.getenv("AWS_ACCESS_KEY_ID"):
        sync.destination_from_env("aws-sm", "my-aws")
        targets.append(("aws-sm", "my-aws"))
    if os.getenv("KEY_VAULT_URI"):
        sync.destination_from_env("azure-kv", "my-azure")
        targets.append(("azure-kv", "my-azure"))
    if os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
        sync.destination_from_env("gcp-sm", "my-gcp")
        targets.append(("gcp-sm", "my-gcp"))
    if not targets:
        sync.write_destination("in-memory", "demo")
        targets.append(("in-memory", "demo"))

    print("== Destinations ==")
    for t, n in targets:
        print(json.dumps(sync.read_destination(t, n), indent=2))

    print("\n== Associations ==")
    for t, n in targets:
        assoc = sync.set_association(t, n, "demo-secrets", "my-secret")
        print(t, n, assoc.sync_status.value, assoc.remote_names)

    # update propagates to every destination
    sync.kv_put("demo-secrets", "my-secret", {"foo": "baz"})
    if ("in-memory", "demo") in targets:
        client = sync.engine.client_for(DestinationType.IN_MEMORY, "demo")
        print("\nin-memory copy:", client.value("vault-demo-secrets-my-secret"))

    print("\n== Teardown ==")
    for t, n in targets:
        sync.remove_association(t, n, "demo-secrets", "my-secret")
        sync.delete_destination(t, n)
        print("removed", t, n)


if __name__ == "__main__":
    main()
