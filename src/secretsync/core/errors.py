class MountNotFoundError(KeyError):
    pass


class MountExistsError(ValueError):
    pass


class SecretNotFoundError(KeyError):
    pass


class SecretVersionNotFoundError(KeyError):
    pass


class CheckAndSetError(ValueError):
    pass


class InvalidSecretNameError(ValueError):
    pass


class DestinationNotFoundError(KeyError):
    pass


class DestinationInUseError(ValueError):
    pass


class UnsupportedDestinationError(ValueError):
    pass


class AssociationNotFoundError(KeyError):
    pass


class InvalidSnapshotError(ValueError):
    pass


class DecryptError(ValueError):
    pass


class MissingKeyMaterialError(FileNotFoundError):
    pass


class MissingDependencyError(RuntimeError):
    pass


# Destination-side error classes
class MissingRemoteSecretError(KeyError):
    pass


class AuthorizationError(PermissionError):
    pass


class RemoteArgumentError(ValueError):
    pass


class RemoteUnavailableError(TimeoutError):
    pass


class SyncError(RuntimeError):
    pass


REMOTE_ERRORS = (
    MissingRemoteSecretError,
    AuthorizationError,
    RemoteArgumentError,
    RemoteUnavailableError,
    SyncError,
)
