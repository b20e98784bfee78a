"""Error taxonomy for payctl commands."""

from __future__ import annotations


class PayctlError(Exception):
    """Base class for every failure a command reports to the operator."""


class ConfigError(PayctlError):
    """Program id, network or project settings could not be resolved."""


class AddressDerivationError(PayctlError):
    """Seeds cannot produce a program-derived address."""


class MalformedAccount(PayctlError):
    """Account data does not fit the expected byte layout."""


class UnknownRecordKind(PayctlError):
    """Leading discriminator matches no known record kind."""

    def __init__(self, discriminator: bytes) -> None:
        super().__init__(f"Unknown record discriminator: {discriminator.hex()}")
        self.discriminator = discriminator


class NotInitialized(PayctlError):
    """The config record does not exist yet."""


class AlreadyInitialized(PayctlError):
    pass


class RecordExists(PayctlError):
    pass


class RecordMissing(PayctlError):
    pass


class InvalidState(PayctlError):
    pass


class ProgramNotDeployed(PayctlError):
    pass


class AuthorizationDenied(PayctlError):
    """Supplied credential does not hold the role the operation requires."""

    def __init__(self, role: str, expected: str, supplied: str) -> None:
        super().__init__(f"Not authorized as {role}: expected {expected}, got {supplied}")
        self.role = role
        self.expected = expected
        self.supplied = supplied


class UserAborted(PayctlError):
    """Operator declined a confirmation step."""


class SubmissionFailed(PayctlError):
    """The network or external signer rejected or lost the request.

    ``outcome_unknown`` is set when the request may still land; the operator
    has to re-check with ``payctl status``.
    """

    def __init__(self, message: str, *, outcome_unknown: bool = False) -> None:
        super().__init__(message)
        self.outcome_unknown = outcome_unknown


class ArtifactMissing(PayctlError):
    pass


class StagingError(PayctlError):
    pass
