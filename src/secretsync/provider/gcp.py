from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, Mapping, Optional

from secretsync.core.errors import MissingDependencyError
from secretsync.provider.retry import Failure, call_with_retry
from secretsync.schema.models import GcpSmDestination

_LABEL_INVALID = re.compile(r"[^a-z0-9_-]")


def to_labels(tags: Optional[Mapping[str, str]]) -> Dict[str, str]:
    # GCP labels: lowercase, max 63 chars, keys must start with a letter
    out: Dict[str, str] = {}
    for k, v in (tags or {}).items():
        key = _LABEL_INVALID.sub("_", k.lower())[:63]
        if not key or not key[0].isalpha():
            key = ("k" + key)[:63]
        out[key] = _LABEL_INVALID.sub("_", v.lower())[:63]
    return out


class GcpSecretManagerDestination:
    def __init__(
        self,
        config: GcpSmDestination,
        client: Optional[Any] = None,
        gexc: Optional[Any] = None,
        sleeper: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._config = config
        self._parent = f"projects/{config.project_id}"
        self._log = logging.getLogger("secretsync.provider.gcp")
        self._sleep = sleeper or time.sleep
        if client is not None:
            # For tests: allow injecting a preconfigured client and optional exceptions module
            self._client = client
            self._gexc = gexc
            return
        try:  # lazy import to keep optional dependency
            from google.api_core import exceptions as _gexc
            from google.cloud import secretmanager as _secretmanager
            from google.oauth2 import service_account as _service_account
        except ImportError as exc:  # pragma: no cover - exercised when extra not installed
            raise MissingDependencyError(
                "google-cloud-secret-manager is required for the gcp-sm destination"
            ) from exc
        info = config.credentials_info()
        if info is not None:
            creds = _service_account.Credentials.from_service_account_info(info)
            self._client = _secretmanager.SecretManagerServiceClient(credentials=creds)
        else:
            self._client = _secretmanager.SecretManagerServiceClient()
        self._gexc = _gexc

    def put(self, name: str, value: str, tags: Optional[Mapping[str, str]] = None) -> None:
        labels = to_labels(tags)

        def _create() -> None:
            try:
                self._client.create_secret(
                    request={
                        "parent": self._parent,
                        "secret_id": name,
                        "secret": {"replication": {"automatic": {}}, "labels": labels},
                    }
                )
            except Exception as exc:
                # existing secret: just add a version
                if not isinstance(exc, getattr(self._gexc, "AlreadyExists", ())):
                    raise

        call_with_retry(
            _create,
            self._classify,
            log=self._log,
            sleep=self._sleep,
            provider="GCP",
            op="create",
            secret=name,
        )
        call_with_retry(
            lambda: self._client.add_secret_version(
                request={
                    "parent": f"{self._parent}/secrets/{name}",
                    "payload": {"data": value.encode("utf-8")},
                }
            ),
            self._classify,
            log=self._log,
            sleep=self._sleep,
            provider="GCP",
            op="put",
            secret=name,
        )

    def delete(self, name: str) -> None:
        call_with_retry(
            lambda: self._client.delete_secret(request={"name": f"{self._parent}/secrets/{name}"}),
            self._classify,
            log=self._log,
            sleep=self._sleep,
            provider="GCP",
            op="delete",
            secret=name,
        )

    def _classify(self, exc: BaseException) -> Failure:
        gexc = self._gexc
        if gexc is None:
            return Failure("unknown")
        if isinstance(exc, getattr(gexc, "NotFound", ())):
            return Failure("not_found")
        # 5xx bucket: ServiceUnavailable, InternalServerError, BadGateway
        if (
            isinstance(exc, getattr(gexc, "ServiceUnavailable", ()))
            or isinstance(exc, getattr(gexc, "InternalServerError", ()))
            or isinstance(exc, getattr(gexc, "BadGateway", ()))
        ):
            return Failure("unavailable")
        # 429 / rate limit: ResourceExhausted, prefer RetryInfo if provided
        if isinstance(exc, getattr(gexc, "ResourceExhausted", ())):
            ri = getattr(exc, "retry_info", None)
            delay = None
            if ri is not None and hasattr(ri, "seconds"):
                sec = getattr(ri, "seconds", 0) or 0
                nanos = getattr(ri, "nanos", 0) or 0
                delay = float(sec) + float(nanos) / 1_000_000_000.0
            return Failure("throttled", delay)
        if isinstance(
            exc,
            (
                getattr(gexc, "PermissionDenied", ()),
                getattr(gexc, "Unauthenticated", ()),
            ),
        ):
            return Failure("auth")
        if isinstance(exc, getattr(gexc, "InvalidArgument", ())) or isinstance(
            exc, getattr(gexc, "FailedPrecondition", ())
        ):
            return Failure("argument")
        if isinstance(exc, getattr(gexc, "DeadlineExceeded", ())) or isinstance(
            exc, getattr(gexc, "GatewayTimeout", ())
        ):
            return Failure("deadline")
        return Failure("unknown")
