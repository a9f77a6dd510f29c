from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional

from secretsync.core.errors import MissingDependencyError
from secretsync.provider.retry import Failure, call_with_retry, parse_retry_after, status_failure
from secretsync.schema.models import AzureKvDestination


class AzureKeyVaultDestination:
    def __init__(
        self,
        config: AzureKvDestination,
        client: Optional[Any] = None,
        aexc: Optional[Any] = None,
        sleeper: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._config = config
        self._log = logging.getLogger("secretsync.provider.azure")
        self._sleep = sleeper or time.sleep
        if client is not None:
            # For tests: allow injecting a preconfigured client and optional exceptions module
            self._client = client
            self._aexc = aexc
            return
        try:  # lazy import to keep optional dependency
            from azure.core import exceptions as _aexc
            from azure.identity import ClientSecretCredential
            from azure.keyvault.secrets import SecretClient
        except ImportError as exc:  # pragma: no cover - exercised when extra not installed
            raise MissingDependencyError(
                "azure-keyvault-secrets and azure-identity are required for the azure-kv destination"
            ) from exc
        credential = ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret.get_secret_value(),
        )
        self._client = SecretClient(vault_url=config.key_vault_uri, credential=credential)
        self._aexc = _aexc

    def put(self, name: str, value: str, tags: Optional[Mapping[str, str]] = None) -> None:
        call_with_retry(
            lambda: self._client.set_secret(name, value, tags=dict(tags) if tags else None),
            self._classify,
            log=self._log,
            sleep=self._sleep,
            provider="Azure",
            op="put",
            secret=name,
        )

    def delete(self, name: str) -> None:
        call_with_retry(
            lambda: self._client.begin_delete_secret(name).wait(),
            self._classify,
            log=self._log,
            sleep=self._sleep,
            provider="Azure",
            op="delete",
            secret=name,
        )
        if self._config.purge_deleted:
            call_with_retry(
                lambda: self._client.purge_deleted_secret(name),
                self._classify,
                log=self._log,
                sleep=self._sleep,
                provider="Azure",
                op="purge",
                secret=name,
            )

    def _classify(self, exc: BaseException) -> Failure:
        aexc = self._aexc
        if aexc is not None:
            # subclasses of HttpResponseError first
            if isinstance(exc, getattr(aexc, "ResourceNotFoundError", ())):
                return Failure("not_found")
            if isinstance(exc, getattr(aexc, "ClientAuthenticationError", ())):
                return Failure("auth")
            if isinstance(exc, getattr(aexc, "ResourceExistsError", ())):
                return Failure("argument")
            if isinstance(exc, getattr(aexc, "ServiceRequestError", ())) or isinstance(
                exc, getattr(aexc, "ServiceResponseError", ())
            ):
                return Failure("unavailable")
            if isinstance(exc, getattr(aexc, "HttpResponseError", ())):
                response = getattr(exc, "response", None)
                headers = getattr(response, "headers", None) or {}
                return status_failure(
                    getattr(exc, "status_code", None),
                    parse_retry_after(headers.get("Retry-After")),
                )
        return Failure("unknown")
