import json
import textwrap
from pathlib import Path

import pytest

pytestmark = pytest.mark.e2e


CONFIG = textwrap.dedent(
    """
    mounts:
      - path: demo-secrets
    destinations:
      - type: aws-sm
        name: my-aws
        options:
          access_key_id: ${AWS_ACCESS_KEY_ID}
          secret_access_key: ${AWS_SECRET_ACCESS_KEY}
          region: ${AWS_REGION:-us-east-1}
      - type: in-memory
        name: mem
        options:
          granularity: secret-key
    kv-secrets:
      - mount: demo-secrets
        name: my-secret
        data:
          foo: bar
          port: 5432
    associations:
      - type: aws-sm
        name: my-aws
        mount: demo-secrets
        secret_name: my-secret
      - type: in-memory
        name: mem
        mount: demo-secrets
    """
)


def _factories():
    from secretsync.provider.memory import InMemoryDestination
    from secretsync.schema.models import DestinationType

    clients = {}
    factories = {t: (lambda d: clients.setdefault(d.key, InMemoryDestination())) for t in DestinationType}
    return factories, clients


def test_load_config_applies_everything(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from secretsync import SecretSync, SyncStatus
    from secretsync.schema.models import DestinationType

    (tmp_path / "secretsync.yaml").write_text(CONFIG, encoding="utf-8")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "shh")
    monkeypatch.delenv("AWS_REGION", raising=False)
    monkeypatch.setenv("SECRETSYNC_CONFIG", str(tmp_path))

    factories, clients = _factories()
    sync = SecretSync(factories=factories)
    cfg = sync.load_config()

    assert len(cfg.associations) == 2
    aws = sync.registry.get("aws-sm", "my-aws")
    assert aws.region == "us-east-1"
    assert aws.secret_access_key.get_secret_value() == "shh"

    aws_client = clients[(DestinationType.AWS_SM, "my-aws")]
    assert json.loads(aws_client.value("vault-demo-secrets-my-secret")) == {"foo": "bar", "port": "5432"}
    mem = clients[(DestinationType.IN_MEMORY, "mem")]
    assert mem.value("vault-demo-secrets-my-secret-port") == "5432"
    assert all(a.sync_status is SyncStatus.SYNCED for a in sync.associations.all())

    # applying the same file again does not create a new version
    sync.load_config(str(tmp_path / "secretsync.yaml"))
    assert sync.kv_metadata("demo-secrets", "my-secret").current_version == 1


def test_load_config_missing_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from secretsync import SecretSync
    from secretsync.core.errors import MissingKeyMaterialError

    (tmp_path / "secretsync.yaml").write_text(CONFIG, encoding="utf-8")
    monkeypatch.delenv("AWS_ACCESS_KEY_ID", raising=False)
    monkeypatch.delenv("AWS_SECRET_ACCESS_KEY", raising=False)

    with pytest.raises(MissingKeyMaterialError):
        SecretSync().load_config(str(tmp_path))


def test_load_config_without_path(monkeypatch: pytest.MonkeyPatch):
    from secretsync import SecretSync

    monkeypatch.delenv("SECRETSYNC_CONFIG", raising=False)
    with pytest.raises(FileNotFoundError):
        SecretSync().load_config()


def test_reloaded_config_with_new_template_renames_remote_secrets(tmp_path: Path):
    from secretsync import SecretSync
    from secretsync.schema.models import DestinationType

    template = textwrap.dedent(
        """
        mounts:
          - path: kv
        destinations:
          - type: in-memory
            name: mem
            options:
              secret_name_template: "{prefix}-{{mount}}-{{secret_path}}"
        kv-secrets:
          - mount: kv
            name: db
            data:
              a: "1"
        associations:
          - type: in-memory
            name: mem
            mount: kv
            secret_name: db
        """
    )
    cfg = tmp_path / "secretsync.yaml"
    cfg.write_text(template.format(prefix="old"), encoding="utf-8")

    factories, clients = _factories()
    sync = SecretSync(factories=factories)
    sync.load_config(str(cfg))
    mem = clients[(DestinationType.IN_MEMORY, "mem")]
    assert sorted(mem.secrets) == ["old-kv-db"]

    # unchanged file: nothing pushed again
    sync.load_config(str(cfg))
    assert mem.calls == [("put", "old-kv-db")]

    cfg.write_text(template.format(prefix="new"), encoding="utf-8")
    sync.load_config(str(cfg))
    assert sorted(mem.secrets) == ["new-kv-db"]
