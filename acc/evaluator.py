"""
acc Trust Gate Evaluator

The verification orchestrator. It runs the gates in order, produces a
Decision, persists it, and returns it:

    SBOM -> Waivers -> Policy -> Attestations (promotion) -> Finalize -> Persist

ENFORCE mode stops at the first blocking gate, persists the partial
Decision and raises the gate's error. WARN mode runs every gate and never
raises; the Decision carries the union of findings.

Status:
    fail  blocking findings exist (expired waiver, unresolved violation,
          missing SBOM, unmet attestation threshold)
    warn  no blocking findings, policy mode is warn and warnings exist
    pass  otherwise
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from .config import GateConfig, PolicyConfig, default_config
from .errors import (
    AttestationThresholdUnmetError,
    EvidenceUnavailableError,
    PolicyViolationError,
    StatePersistError,
    VerificationFailedError,
    WaiverExpiredError,
)
from .evidence import EvidenceSource
from .gates import (
    AttestationGate,
    Gate,
    GateContext,
    GateName,
    GateOutcome,
    PolicyGate,
    SBOMGate,
    WaiverGate,
)
from .logging_config import audit_log, set_verification_id
from .models import VerificationMode, Violation
from .profile import Profile
from .state import DecisionStateStore
from .util import utc_now, utc_rfc3339

logger = logging.getLogger(__name__)


class DecisionStatus(str, Enum):
    """Verification outcome."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


EXIT_CODES = {
    DecisionStatus.PASS: 0,
    DecisionStatus.FAIL: 1,
    DecisionStatus.WARN: 2,
}

GATE_ERRORS: Dict[GateName, Type[VerificationFailedError]] = {
    GateName.SBOM: EvidenceUnavailableError,
    GateName.WAIVERS: WaiverExpiredError,
    GateName.POLICY: PolicyViolationError,
    GateName.ATTESTATIONS: AttestationThresholdUnmetError,
}


@dataclass
class Decision:
    """
    The verdict for one artifact.

    Serialized with camelCase keys; this is the "result" object of the
    persisted snapshot.
    """
    status: DecisionStatus
    artifact_ref: str
    sbom_present: bool = False
    violations: List[Violation] = field(default_factory=list)
    warnings: List[Violation] = field(default_factory=list)
    waived: List[Violation] = field(default_factory=list)
    attestations_considered: List[str] = field(default_factory=list)
    attestation_result: Optional[Dict[str, Any]] = None
    policy_result: Dict[str, Any] = field(default_factory=dict)
    input: Dict[str, Any] = field(default_factory=dict)
    artifact_digest: Optional[str] = None
    mode: VerificationMode = VerificationMode.ENFORCE
    for_promotion: bool = False
    gates: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_rfc3339)

    @property
    def allow(self) -> bool:
        return self.status != DecisionStatus.FAIL

    def exit_code(self) -> int:
        return EXIT_CODES[self.status]

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "status": self.status.value,
            "artifactRef": self.artifact_ref,
            "sbomPresent": self.sbom_present,
            "violations": [v.to_dict() for v in self.violations],
            "warnings": [v.to_dict() for v in self.warnings],
            "waived": [v.to_dict() for v in self.waived],
            "attestationsConsidered": list(self.attestations_considered),
            "policyResult": dict(self.policy_result),
            "input": dict(self.input),
            "mode": self.mode.value,
            "forPromotion": self.for_promotion,
            "gates": list(self.gates),
            "timestamp": self.timestamp,
        }
        if self.artifact_digest:
            d["artifactDigest"] = self.artifact_digest
        if self.attestation_result is not None:
            d["attestationResult"] = self.attestation_result
        return d


def finalize_status(
    violations: List[Violation],
    warnings: List[Violation],
    mode: VerificationMode
) -> DecisionStatus:
    """Status from accumulated findings."""
    if violations:
        return DecisionStatus.FAIL
    if mode == VerificationMode.WARN and warnings:
        return DecisionStatus.WARN
    return DecisionStatus.PASS


class TrustGateEvaluator:
    """
    Runs verifications for a project.

    Args:
        gate_config: Project trust configuration
        project_root: Directory containing .acc/
        state_store: Where decisions are persisted
        clock: Returns the current time (waiver expiry)
    """

    def __init__(
        self,
        gate_config: Optional[GateConfig] = None,
        project_root: str = ".",
        state_store: Optional[DecisionStateStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = gate_config or default_config(os.path.basename(os.path.abspath(project_root)))
        self.project_root = project_root
        self.state_store = state_store or DecisionStateStore(project_root)
        self._clock = clock or utc_now

    def _gates(self, run_attestations: bool) -> List[Gate]:
        gates: List[Gate] = [SBOMGate(), WaiverGate(), PolicyGate()]
        if run_attestations and self.config.attestation_requirements().enabled:
            gates.append(AttestationGate(
                lambda ctx: finalize_status(ctx.violations, ctx.warnings, ctx.mode).value
            ))
        return gates

    def verify(
        self,
        source: EvidenceSource,
        artifact_ref: str,
        for_promotion: bool = False,
        mode: Optional[VerificationMode] = None,
        profile: Optional[Profile] = None,
        policy: Optional[PolicyConfig] = None,
    ) -> Decision:
        """
        Verify an artifact.

        Args:
            source: Evidence for the artifact
            artifact_ref: Image reference being gated
            for_promotion: Also require the attestation threshold
            mode: Overrides the policy mode
            profile: Optional profile applied to rule-engine violations
            policy: Policy to apply (e.g. an environment override)

        Returns:
            The persisted Decision

        Raises:
            VerificationFailedError: subclass naming the blocking gate, in
                ENFORCE mode only; carries the Decision
        """
        policy = policy or self.config.policy
        mode = VerificationMode(mode or policy.mode)
        set_verification_id()
        audit_log.verification_started(artifact_ref, mode.value, for_promotion, profile.name if profile else None)

        ctx = GateContext(
            source=source,
            artifact_ref=artifact_ref,
            for_promotion=for_promotion,
            mode=mode,
            requirements=self.config.attestation_requirements(),
            profile=profile,
            now=self._clock(),
        )
        ctx.bundle.artifact_digest = source.artifact_digest(artifact_ref)

        outcomes: List[GateOutcome] = []
        first_block: Optional[GateOutcome] = None
        for gate in self._gates(for_promotion or policy.require_attestation):
            outcome = gate.evaluate(ctx)
            ctx.record(outcome)
            outcomes.append(outcome)
            audit_log.gate_result(gate.name.value, outcome.passed(), [v.rule for v in outcome.blocking])

            if not outcome.passed() and first_block is None:
                first_block = outcome
                if mode == VerificationMode.ENFORCE:
                    break

        decision = self._decision(ctx, outcomes)
        self._persist(decision, profile)
        audit_log.verification_decision(
            artifact_ref, decision.status.value, len(decision.violations), len(decision.warnings)
        )

        if first_block is not None and mode == VerificationMode.ENFORCE:
            raise GATE_ERRORS[first_block.gate](first_block.message, decision)
        return decision

    def _decision(self, ctx: GateContext, outcomes: List[GateOutcome]) -> Decision:
        bundle = ctx.bundle
        attestation_result = None
        considered: List[str] = []
        if ctx.threshold is not None:
            attestation_result = ctx.threshold.to_dict()
            considered = [d.location for d in ctx.threshold.details]

        return Decision(
            status=finalize_status(ctx.violations, ctx.warnings, ctx.mode),
            artifact_ref=ctx.artifact_ref,
            sbom_present=bundle.sbom_present,
            violations=list(ctx.violations),
            warnings=list(ctx.warnings),
            waived=list(ctx.waived),
            attestations_considered=considered,
            attestation_result=attestation_result,
            policy_result=dict(ctx.policy_result),
            input=dict(bundle.input),
            artifact_digest=bundle.artifact_digest,
            mode=ctx.mode,
            for_promotion=ctx.for_promotion,
            gates=[o.to_dict() for o in outcomes],
            timestamp=utc_rfc3339(ctx.now),
        )

    def _persist(self, decision: Decision, profile: Optional[Profile]) -> None:
        """Write the snapshot; a failure is logged and never changes the outcome."""
        try:
            self.state_store.persist(
                decision.artifact_ref,
                decision.to_dict(),
                profile_used=profile.name if profile else None,
                digest=decision.artifact_digest,
            )
        except StatePersistError as e:
            logger.error("%s", e)
