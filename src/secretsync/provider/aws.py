from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional

from secretsync.core.errors import MissingDependencyError
from secretsync.provider.retry import Failure, call_with_retry, status_failure
from secretsync.schema.models import AwsSmDestination

_NOT_FOUND = {"ResourceNotFoundException"}
_AUTH = {
    "AccessDeniedException",
    "AccessDenied",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "ExpiredTokenException",
    "InvalidSignatureException",
}
_THROTTLED = {"ThrottlingException", "TooManyRequestsException", "RequestLimitExceeded"}
_UNAVAILABLE = {"InternalServiceError", "InternalFailure", "ServiceUnavailable"}
_ARGUMENT = {
    "InvalidParameterException",
    "InvalidRequestException",
    "ValidationException",
    "LimitExceededException",
    "EncryptionFailure",
}


class AwsSecretsManagerDestination:
    def __init__(
        self,
        config: AwsSmDestination,
        client: Optional[Any] = None,
        bexc: Optional[Any] = None,
        sleeper: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._config = config
        self._log = logging.getLogger("secretsync.provider.aws")
        self._sleep = sleeper or time.sleep
        if client is not None:
            # For tests: allow injecting a preconfigured client and optional exceptions module
            self._client = client
            self._bexc = bexc
            return
        try:  # lazy import to keep optional dependency
            import boto3 as _boto3
            from botocore import exceptions as _bexc
        except ImportError as exc:  # pragma: no cover - exercised when extra not installed
            raise MissingDependencyError("boto3 is required for the aws-sm destination") from exc
        session = _boto3.Session(
            aws_access_key_id=_reveal(config.access_key_id),
            aws_secret_access_key=_reveal(config.secret_access_key),
            aws_session_token=_reveal(config.session_token),
            region_name=config.region,
        )
        self._client = session.client("secretsmanager")
        self._bexc = _bexc

    def put(self, name: str, value: str, tags: Optional[Mapping[str, str]] = None) -> None:
        aws_tags = [{"Key": k, "Value": v} for k, v in sorted((tags or {}).items())]

        def _upsert() -> None:
            try:
                kwargs: dict[str, Any] = {"Name": name, "SecretString": value}
                if aws_tags:
                    kwargs["Tags"] = aws_tags
                self._client.create_secret(**kwargs)
                return
            except Exception as exc:
                if self._error_code(exc) != "ResourceExistsException":
                    raise
            self._client.put_secret_value(SecretId=name, SecretString=value)
            if aws_tags:
                self._client.tag_resource(SecretId=name, Tags=aws_tags)

        call_with_retry(
            _upsert,
            self._classify,
            log=self._log,
            sleep=self._sleep,
            provider="AWS",
            op="put",
            secret=name,
        )

    def delete(self, name: str) -> None:
        call_with_retry(
            lambda: self._client.delete_secret(SecretId=name, ForceDeleteWithoutRecovery=True),
            self._classify,
            log=self._log,
            sleep=self._sleep,
            provider="AWS",
            op="delete",
            secret=name,
        )

    def _error_code(self, exc: BaseException) -> Optional[str]:
        response = getattr(exc, "response", None)
        if not isinstance(response, Mapping):
            return None
        return response.get("Error", {}).get("Code")

    def _classify(self, exc: BaseException) -> Failure:
        bexc = self._bexc
        if bexc is not None:
            connection_errors = tuple(
                t
                for t in (
                    getattr(bexc, "EndpointConnectionError", None),
                    getattr(bexc, "ConnectTimeoutError", None),
                    getattr(bexc, "ReadTimeoutError", None),
                )
                if t is not None
            )
            if connection_errors and isinstance(exc, connection_errors):
                return Failure("unavailable")
            if isinstance(exc, getattr(bexc, "NoCredentialsError", ())):
                return Failure("auth")
        code = self._error_code(exc)
        if code is None:
            return Failure("unknown")
        if code in _NOT_FOUND:
            return Failure("not_found")
        if code in _AUTH:
            return Failure("auth")
        if code in _THROTTLED:
            return Failure("throttled")
        if code in _UNAVAILABLE:
            return Failure("unavailable")
        if code in _ARGUMENT:
            return Failure("argument")
        response: Mapping[str, Any] = getattr(exc, "response", {})
        return status_failure(response.get("ResponseMetadata", {}).get("HTTPStatusCode"))


def _reveal(value: Any) -> Optional[str]:
    return value.get_secret_value() if value is not None else None
