"""
acc Verification Gates

Each gate inspects one kind of evidence and reports blocking findings and
warnings. Gates never raise: evidence problems become findings, so the
evaluator alone decides whether to stop (enforce) or continue (warn).

Gate order:
    SBOMGate -> WaiverGate -> PolicyGate -> AttestationGate
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .attestations import Attestation, ThresholdResult, evaluate_attestations
from .config import AttestationRequirements
from .errors import PolicyEvaluationError, WaiverLoadError
from .evidence import EvidenceSource
from .hashing import results_hash
from .models import (
    RULE_ATTESTATION_REQUIRED,
    RULE_POLICY_EVALUATION_ERROR,
    RULE_SBOM_REQUIRED,
    VerificationMode,
    Violation,
    ViolationResult,
)
from .profile import Profile
from .resolver import resolve_violations
from .waivers import Waiver, expired_waivers, waiver_for_rule

logger = logging.getLogger(__name__)


class GateName(str, Enum):
    """Gates in evaluation order."""
    SBOM = "sbom"
    WAIVERS = "waivers"
    POLICY = "policy"
    ATTESTATIONS = "attestations"


@dataclass
class EvidenceBundle:
    """
    Evidence gathered for one verification call.

    Filled in gate by gate, so evidence for gates that never ran (after a
    fail-fast stop) is never requested.
    """
    artifact_digest: Optional[str] = None
    sbom_present: bool = False
    raw_violations: List[Violation] = field(default_factory=list)
    attestations: List[Attestation] = field(default_factory=list)
    waivers: List[Waiver] = field(default_factory=list)
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GateOutcome:
    """Result of evaluating a single gate."""
    gate: GateName
    blocking: List[Violation] = field(default_factory=list)
    warnings: List[Violation] = field(default_factory=list)
    waived: List[Violation] = field(default_factory=list)
    message: str = ""
    detail: Dict[str, Any] = field(default_factory=dict)

    def passed(self) -> bool:
        return not self.blocking

    def to_dict(self) -> Dict[str, Any]:
        d = {"gate": self.gate.value, "passed": self.passed()}
        if self.blocking:
            d["blocking"] = [v.rule for v in self.blocking]
        if self.message:
            d["message"] = self.message
        return d


@dataclass
class GateContext:
    """Inputs shared by the gates of one verification."""
    source: EvidenceSource
    artifact_ref: str
    for_promotion: bool
    mode: VerificationMode
    requirements: AttestationRequirements
    profile: Optional[Profile] = None
    now: Optional[datetime] = None
    bundle: EvidenceBundle = field(default_factory=EvidenceBundle)
    violations: List[Violation] = field(default_factory=list)
    warnings: List[Violation] = field(default_factory=list)
    waived: List[Violation] = field(default_factory=list)
    policy_result: Dict[str, Any] = field(default_factory=dict)
    threshold: Optional[ThresholdResult] = None

    def record(self, outcome: GateOutcome) -> None:
        self.violations.extend(outcome.blocking)
        self.warnings.extend(outcome.warnings)
        self.waived.extend(outcome.waived)


class Gate(ABC):
    """Abstract base class for all gates."""

    name: GateName

    @abstractmethod
    def evaluate(self, ctx: GateContext) -> GateOutcome:
        """Evaluate the gate. Must return an outcome, never raise."""
        pass

    def _pass(self, **kwargs) -> GateOutcome:
        return GateOutcome(gate=self.name, **kwargs)

    def _block(self, blocking: List[Violation], message: str, **kwargs) -> GateOutcome:
        return GateOutcome(gate=self.name, blocking=blocking, message=message, **kwargs)


class SBOMGate(Gate):
    """The artifact must have an SBOM."""

    name = GateName.SBOM

    def evaluate(self, ctx: GateContext) -> GateOutcome:
        ctx.bundle.sbom_present = ctx.source.sbom_present(ctx.artifact_ref)
        if ctx.bundle.sbom_present:
            return self._pass()
        v = Violation.critical(RULE_SBOM_REQUIRED, "SBOM is required but not found")
        return self._block([v], f"{RULE_SBOM_REQUIRED}: SBOM not found for {ctx.artifact_ref}")


class WaiverGate(Gate):
    """
    Every waiver must be within its expiry.

    An expired waiver blocks in both modes. A malformed waiver file is
    treated as an empty registry.
    """

    name = GateName.WAIVERS

    def evaluate(self, ctx: GateContext) -> GateOutcome:
        try:
            ctx.bundle.waivers = ctx.source.waivers()
        except WaiverLoadError as e:
            logger.warning("Ignoring waivers: %s", e)
            ctx.bundle.waivers = []

        blocking = [
            Violation.critical(w.rule_id, f"Waiver for rule '{w.rule_id}' expired on {w.expiry}")
            for w in expired_waivers(ctx.bundle.waivers, ctx.now)
        ]

        if not blocking:
            return self._pass()
        rules = ", ".join(v.rule for v in blocking)
        return self._block(blocking, f"expired waivers for: {rules}")


class PolicyGate(Gate):
    """
    Rule engine violations, resolved through the profile.

    Engine results marked "warn" are advisory and never block. Blocking
    violations covered by an unexpired waiver are recorded as waived.
    """

    name = GateName.POLICY

    def evaluate(self, ctx: GateContext) -> GateOutcome:
        bundle = ctx.bundle
        bundle.input = ctx.source.policy_input(ctx.artifact_ref, bundle.artifact_digest, ctx.for_promotion)

        try:
            bundle.raw_violations = ctx.source.raw_violations(bundle.input)
        except PolicyEvaluationError as e:
            logger.error("Policy evaluation failed: %s", e)
            bundle.raw_violations = [Violation.critical(RULE_POLICY_EVALUATION_ERROR, str(e))]

        failing = [v for v in bundle.raw_violations if v.result != ViolationResult.WARN.value]
        advisory = [v for v in bundle.raw_violations if v.result == ViolationResult.WARN.value]

        resolution = resolve_violations(ctx.profile, failing)

        blocking = []
        waived = []
        for v in resolution.violations:
            if waiver_for_rule(bundle.waivers, v.rule, ctx.now) is not None:
                waived.append(v)
            else:
                blocking.append(v)

        warnings = resolution.warnings + advisory
        ctx.policy_result = {
            "allow": not blocking,
            "violations": [v.to_dict() for v in blocking],
            "warnings": [v.to_dict() for v in warnings],
        }

        if not blocking:
            return self._pass(warnings=warnings, waived=waived)
        rules = ", ".join(sorted({v.rule for v in blocking}))
        return self._block(blocking, f"policy violations: {rules}", warnings=warnings, waived=waived)


class AttestationGate(Gate):
    """
    Enough valid attestations must vouch for this artifact and result.

    The results hash is taken over the findings accumulated so far, which
    is what an attestation of an identical earlier verification recorded.
    """

    name = GateName.ATTESTATIONS

    def __init__(self, interim_status):
        self._interim_status = interim_status

    def evaluate(self, ctx: GateContext) -> GateOutcome:
        requirements = ctx.requirements
        digest = ctx.bundle.artifact_digest

        attestations, fetch_errors = ctx.source.attestations(ctx.artifact_ref, digest, requirements)
        ctx.bundle.attestations = attestations

        interim = {
            "status": self._interim_status(ctx),
            "sbomPresent": ctx.bundle.sbom_present,
            "violations": [v.to_dict() for v in ctx.violations],
            "warnings": [v.to_dict() for v in ctx.warnings],
        }
        threshold = evaluate_attestations(requirements, attestations, digest, results_hash(interim))
        ctx.threshold = threshold

        detail = {"threshold": threshold.to_dict()}
        if fetch_errors:
            detail["fetchErrors"] = fetch_errors

        if threshold.met:
            return self._pass(detail=detail)

        message = (
            f"Attestation required for promotion: {threshold.valid_count} valid of "
            f"{threshold.min_count} required"
        )
        if fetch_errors:
            message += f" (remote fetch failed: {'; '.join(fetch_errors)})"
        v = Violation.critical(RULE_ATTESTATION_REQUIRED, message)

        if threshold.advisory:
            return self._pass(warnings=[v], detail=detail, message=message)
        return self._block([v], f"{RULE_ATTESTATION_REQUIRED}: {message}", detail=detail)
