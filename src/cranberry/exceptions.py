"""Custom exceptions for cranberry.

Exception Hierarchy:
    CranberryError (base)
    ├── ConfigurationError
    ├── ValidationError            # Builder validation failed (construction time)
    ├── PlanStateError             # Plan mutated after execution started
    ├── PendingValueError          # Pending value read before resolution
    ├── RegistryError              # Registry transport and protocol errors
    │   ├── RegistryConnectionError
    │   ├── AuthenticationError
    │   ├── ImageNotFoundError
    │   ├── InvalidReferenceError
    │   ├── ManifestError
    │   └── BlobUploadError
    ├── DigestMismatchError        # Integrity failure, never downgraded
    ├── SyncError
    │   └── NoSupportedPlatformsError
    ├── VersionCheckError
    │   └── NoValidVersionsError
    ├── ScanError
    │   └── ScanThresholdError
    ├── AuditFailedError
    ├── BuildError
    ├── ToolError
    │   └── ToolNotFoundError
    ├── PlanCancelledError
    └── ResourceExecutionError     # Wraps the first failing resource of a plan
"""


class CranberryError(Exception):
    """Base exception for all cranberry errors."""

    pass


class ConfigurationError(CranberryError):
    """Raised when required configuration is missing or invalid."""

    pass


class ValidationError(CranberryError):
    """Raised when a resource builder fails validation.

    Attributes:
        resource: Resource kind and name (e.g. "sync 'vector'")
        errors: Every validation problem found, in discovery order
    """

    def __init__(self, resource: str, errors: list[str]) -> None:
        self.resource = resource
        self.errors = list(errors)
        super().__init__(f"invalid {resource}: {'; '.join(self.errors)}")


class PlanStateError(CranberryError):
    """Raised when a plan is modified after execution has started."""

    pass


class PendingValueError(CranberryError):
    """Raised when a pending value is read before it has been resolved."""

    pass


class RegistryError(CranberryError):
    """Base exception for all registry-related errors."""

    pass


class RegistryConnectionError(RegistryError):
    """Raised when unable to connect to the registry."""

    pass


class AuthenticationError(RegistryError):
    """Raised when the registry rejects our credentials."""

    pass


class ImageNotFoundError(RegistryError):
    """Raised when the registry answers 404 for a manifest or blob."""

    pass


class InvalidReferenceError(RegistryError):
    """Raised when an image reference cannot be parsed."""

    pass


class BlobUploadError(RegistryError):
    """Raised when blob upload fails."""

    pass


class ManifestError(RegistryError):
    """Raised when manifest operations fail."""

    pass


class DigestMismatchError(CranberryError):
    """Raised when content does not match its expected digest.

    Signals possible tag mutation or supply-chain tampering.
    """

    pass


class SyncError(CranberryError):
    """Raised when an image sync fails."""

    pass


class NoSupportedPlatformsError(SyncError):
    """Raised when a multi-platform source has no platform we can sync."""

    pass


class VersionCheckError(CranberryError):
    """Raised when a version check cannot be completed."""

    pass


class NoValidVersionsError(VersionCheckError):
    """Raised when no tag in a repository qualifies as a release version."""

    pass


class ScanError(CranberryError):
    """Raised when a vulnerability scan cannot run."""

    pass


class ScanThresholdError(ScanError):
    """Raised when vulnerabilities are found at or above an error threshold."""

    pass


class AuditFailedError(CranberryError):
    """Raised when a Dockerfile or image audit finds failing issues."""

    pass


class BuildError(CranberryError):
    """Raised when a remote image build fails."""

    pass


class ToolError(CranberryError):
    """Raised when an external tool fails or returns unparseable output."""

    pass


class ToolNotFoundError(ToolError):
    """Raised when an external tool is not installed."""

    pass


class PlanCancelledError(CranberryError):
    """Raised when plan execution is cancelled between resources."""

    pass


class ResourceExecutionError(CranberryError):
    """Raised when a resource fails during plan execution.

    Attributes:
        stage: Stage name (e.g. "syncs")
        kind: Resource kind (e.g. "sync")
        name: Resource name
    """

    def __init__(self, stage: str, kind: str, name: str, cause: BaseException) -> None:
        self.stage = stage
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' failed in stage {stage}: {cause}")
