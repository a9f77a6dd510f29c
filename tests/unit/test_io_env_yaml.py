import textwrap
from pathlib import Path

import pytest

pytestmark = pytest.mark.unit


def test_expand_env_with_defaults_and_missing():
    from secretsync.core.errors import MissingKeyMaterialError
    from secretsync.io.env import expand_env, expand_tree

    env = {"REGION": "eu-west-1"}
    assert expand_env("${REGION}", env) == "eu-west-1"
    assert expand_env("r=${REGION}/${ZONE:-a}", env) == "r=eu-west-1/a"
    assert expand_env("${EMPTY:-}", env) == ""
    assert expand_env("plain $REGION", env) == "plain $REGION"
    with pytest.raises(MissingKeyMaterialError):
        expand_env("${NOPE}", env)

    tree = {"a": ["${REGION}", 1, {"b": "${REGION}"}], "c": True}
    assert expand_tree(tree, env) == {"a": ["eu-west-1", 1, {"b": "eu-west-1"}], "c": True}


def test_expand_env_reads_process_environment(monkeypatch: pytest.MonkeyPatch):
    from secretsync.io.env import expand_env

    monkeypatch.setenv("SECRETSYNC_TEST_VAR", "from-env")
    assert expand_env("${SECRETSYNC_TEST_VAR}") == "from-env"


def test_read_yaml_and_resolve_config_path(tmp_path: Path):
    from secretsync.io.fs import resolve_config_path
    from secretsync.io.yaml import read_yaml, read_yaml_text

    cfg = tmp_path / "secretsync.yaml"
    cfg.write_text(
        textwrap.dedent(
            """
            mounts:
              - path: kv
            """
        ),
        encoding="utf-8",
    )

    assert resolve_config_path(str(tmp_path)) == str(cfg)
    assert resolve_config_path(str(cfg)) == str(cfg)
    assert read_yaml(str(cfg)) == {"mounts": [{"path": "kv"}]}
    assert read_yaml_text("") == {}

    with pytest.raises(ValueError):
        read_yaml_text("- a\n- b\n")
    with pytest.raises(FileNotFoundError):
        resolve_config_path(str(tmp_path / "missing"))
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(FileNotFoundError):
        resolve_config_path(str(empty))
