"""
acc error taxonomy.

Every error names the rule or gate that produced it. Verification
failures carry the Decision that was persisted before the error was
raised, so callers can render it without re-reading state.
"""

from typing import Any, Optional


class AccError(Exception):
    """Base class for all acc errors."""


class VerificationFailedError(AccError):
    """
    A blocking gate stopped an enforce-mode verification.

    Attributes:
        gate: Name of the gate that blocked
        decision: The (partial) Decision at the point of failure
    """

    gate = "verification"

    def __init__(self, message: str, decision: Any = None):
        super().__init__(message)
        self.decision = decision


class EvidenceUnavailableError(VerificationFailedError):
    """Required evidence (the SBOM) is missing."""
    gate = "sbom"


class WaiverExpiredError(VerificationFailedError):
    """A waiver in the registry has expired."""
    gate = "waivers"


class PolicyViolationError(VerificationFailedError):
    """Blocking policy violations remain after profile resolution."""
    gate = "policy"


class AttestationThresholdUnmetError(VerificationFailedError):
    """Promotion requires more valid attestations than were found."""
    gate = "attestations"


class KeyResolutionError(AccError):
    """No usable Ed25519 signing key could be resolved."""


class ProfileSchemaError(AccError):
    """A policy profile failed strict schema validation."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class WaiverLoadError(AccError):
    """The waiver file exists but could not be read or parsed."""


class PolicyEvaluationError(AccError):
    """The violation producer (rule engine) failed."""


class RemoteFetchError(AccError):
    """Remote attestations could not be fetched after retries."""


class RemotePublishError(AccError):
    """An attestation could not be published to the registry."""


class StatePersistError(AccError):
    """A decision snapshot could not be written."""


class StateNotFoundError(AccError):
    """No decision snapshot exists yet."""


class ConfigError(AccError):
    """The gate configuration file is invalid."""
