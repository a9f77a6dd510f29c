from __future__ import annotations

from typing import Callable, Dict, Type, TypeVar

from secretsync.core.errors import UnsupportedDestinationError
from secretsync.provider.memory import InMemoryDestination
from secretsync.provider.protocol import DestinationClientProtocol
from secretsync.schema.models import (
    AwsSmDestination,
    AzureKvDestination,
    Destination,
    DestinationType,
    GcpSmDestination,
)

ClientFactory = Callable[[Destination], DestinationClientProtocol]
T = TypeVar("T", bound=Destination)


def _expect(dest: Destination, model: Type[T]) -> T:
    if not isinstance(dest, model):
        raise UnsupportedDestinationError(
            f"{model.__name__} expected for {dest.type.value}/{dest.name}, got {type(dest).__name__}"
        )
    return dest


def _aws(dest: Destination) -> DestinationClientProtocol:
    from secretsync.provider.aws import AwsSecretsManagerDestination

    return AwsSecretsManagerDestination(_expect(dest, AwsSmDestination))


def _azure(dest: Destination) -> DestinationClientProtocol:
    from secretsync.provider.azure import AzureKeyVaultDestination

    return AzureKeyVaultDestination(_expect(dest, AzureKvDestination))


def _gcp(dest: Destination) -> DestinationClientProtocol:
    from secretsync.provider.gcp import GcpSecretManagerDestination

    return GcpSecretManagerDestination(_expect(dest, GcpSmDestination))


def _memory(dest: Destination) -> DestinationClientProtocol:
    return InMemoryDestination()


DEFAULT_FACTORIES: Dict[DestinationType, ClientFactory] = {
    DestinationType.AWS_SM: _aws,
    DestinationType.AZURE_KV: _azure,
    DestinationType.GCP_SM: _gcp,
    DestinationType.IN_MEMORY: _memory,
}


def build_client(dest: Destination, factories: Dict[DestinationType, ClientFactory] | None = None) -> DestinationClientProtocol:
    table = factories if factories is not None else DEFAULT_FACTORIES
    try:
        factory = table[dest.type]
    except KeyError as exc:
        raise UnsupportedDestinationError(dest.type.value) from exc
    return factory(dest)
