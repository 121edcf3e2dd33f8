"""
acc Push and Run

Both commands sit in front of the container runtime. push requires a
prior non-failing verification of the same image; run verifies afresh.
When policy.requireAttestation is set, both also require the attestation
threshold. The runtime itself is driven by callables supplied by the
caller, the way promotion takes a retagger.

A runtime failure after the gate allowed the image does not change the
trust decision: it is reported as a warning.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .attestations import ThresholdResult, evaluate_attestations
from .errors import AttestationThresholdUnmetError
from .evaluator import Decision, TrustGateEvaluator
from .evidence import EvidenceSource
from .hashing import results_hash
from .profile import Profile
from .state import require_verified
from .util import utc_rfc3339

logger = logging.getLogger(__name__)

PUSH_SCHEMA_VERSION = "v0.1"

Pusher = Callable[[str], None]
Runner = Callable[[str], int]


@dataclass
class PushResult:
    image_ref: str
    image_digest: str
    verification_status: str
    pushed: bool = False
    attestation_ref: Optional[str] = None
    attestation_result: Optional[ThresholdResult] = None
    timestamp: str = field(default_factory=utc_rfc3339)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "schemaVersion": PUSH_SCHEMA_VERSION,
            "command": "push",
            "imageRef": self.image_ref,
            "imageDigest": self.image_digest,
            "verificationStatus": self.verification_status,
            "pushed": self.pushed,
            "timestamp": self.timestamp,
        }
        if self.attestation_ref:
            d["attestationRef"] = self.attestation_ref
        if self.attestation_result is not None:
            d["attestationResult"] = self.attestation_result.to_dict()
        return d


@dataclass
class RunResult:
    image_ref: str
    decision: Decision
    executed: bool = False
    exit_status: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": "run",
            "imageRef": self.image_ref,
            "allowed": self.decision.allow,
            "executed": self.executed,
            "exitStatus": self.exit_status,
            "warnings": list(self.warnings),
            "verification": self.decision.to_dict(),
        }


def check_required_attestations(
    evaluator: TrustGateEvaluator,
    source: EvidenceSource,
    image_ref: str,
    digest: Optional[str],
    decision: Dict[str, Any],
) -> ThresholdResult:
    """
    Attestation threshold for an already-verified decision.

    Raises:
        AttestationThresholdUnmetError: threshold unmet and not advisory
    """
    requirements = evaluator.config.attestation_requirements().model_copy(update={"enabled": True})
    attestations, errors = source.attestations(image_ref, digest, requirements)
    for error in errors:
        logger.warning("%s", error)

    result = evaluate_attestations(requirements, attestations, digest, results_hash(decision))
    if not result.met and not result.advisory:
        raise AttestationThresholdUnmetError(
            f"{image_ref}: {result.valid_count} valid attestation(s), {result.min_count} required"
        )
    if result.advisory:
        logger.warning("Attestation threshold unmet for %s (advisory)", image_ref)
    return result


def push(
    evaluator: TrustGateEvaluator,
    source: EvidenceSource,
    image_ref: str,
    pusher: Optional[Pusher] = None,
) -> PushResult:
    """
    Push an image that passed (or warned) its last verification.

    Raises:
        StateNotFoundError: nothing has been verified yet
        AccError: the last verification was for another image, or failed
        AttestationThresholdUnmetError: attestations required and missing
    """
    if not image_ref:
        raise ValueError("image reference required")

    digest = source.artifact_digest(image_ref)
    snapshot = require_verified(evaluator.state_store, image_ref, digest)
    decision = snapshot["result"]
    digest = digest or decision.get("artifactDigest")

    result = PushResult(
        image_ref=image_ref,
        image_digest=digest or "",
        verification_status=snapshot.get("status", ""),
    )
    if evaluator.config.policy.require_attestation:
        result.attestation_result = check_required_attestations(
            evaluator, source, image_ref, digest, decision
        )

    if pusher is not None:
        pusher(image_ref)
        result.pushed = True
        logger.info("Pushed %s", image_ref)

    pointer = evaluator.state_store.load_last_attestation()
    if pointer and pointer.get("imageRef") == image_ref:
        result.attestation_ref = pointer.get("path")
    return result


def run_workload(
    evaluator: TrustGateEvaluator,
    source: EvidenceSource,
    image_ref: str,
    runner: Optional[Runner] = None,
    profile: Optional[Profile] = None,
) -> RunResult:
    """
    Verify an image and, if allowed, hand it to the runner.

    Raises:
        VerificationFailedError: the gate blocked (enforce mode)
    """
    if not image_ref:
        raise ValueError("image reference required")

    decision = evaluator.verify(source, image_ref, profile=profile)
    result = RunResult(image_ref=image_ref, decision=decision)
    if not decision.allow:
        logger.warning("Not running %s: verification status %s", image_ref, decision.status.value)
        return result

    if runner is None:
        return result

    try:
        result.exit_status = runner(image_ref)
    except OSError as e:
        result.warnings.append(f"runtime execution failed: {e}")
        logger.warning("Runtime execution failed for %s: %s", image_ref, e)
        return result

    result.executed = True
    if result.exit_status:
        result.warnings.append(f"runtime exited with status {result.exit_status}")
        logger.warning("Runtime exited with status %s for %s", result.exit_status, image_ref)
    return result
