"""
acc Promotion

Promotion verifies an image against the target environment's policy,
with the attestation threshold enforced, and only then retags it into
the environment's registry. Retagging itself is delegated to a callable
supplied by the caller (the container runtime is not driven from here).
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .evaluator import Decision, TrustGateEvaluator
from .evidence import EvidenceSource
from .profile import Profile

logger = logging.getLogger(__name__)

Retagger = Callable[[str, str], None]


@dataclass
class PromotionResult:
    source_ref: str
    target_ref: str
    environment: str
    decision: Decision
    retagged: bool = False

    @property
    def status(self) -> str:
        return "success" if self.decision.allow else "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceRef": self.source_ref,
            "targetRef": self.target_ref,
            "env": self.environment,
            "digest": self.decision.artifact_digest or "",
            "status": self.status,
            "retagged": self.retagged,
            "verification": self.decision.to_dict(),
        }


def build_target_ref(source_ref: str, environment: str, registry: str) -> str:
    """<registry>/<image name>:<environment>, dropping the source registry, tag and digest."""
    name = source_ref.split("@", 1)[0]
    name = name.rsplit("/", 1)[-1]
    name = name.split(":", 1)[0]
    return f"{registry}/{name}:{environment}"


def promote(
    evaluator: TrustGateEvaluator,
    source: EvidenceSource,
    image_ref: str,
    environment: str,
    profile: Optional[Profile] = None,
    retag: Optional[Retagger] = None,
) -> PromotionResult:
    """
    Promote an image to an environment.

    Raises:
        ValueError: missing image or environment
        VerificationFailedError: the promotion gate blocked (enforce mode)
    """
    if not image_ref:
        raise ValueError("image reference required")
    if not environment:
        raise ValueError("target environment required")

    policy = evaluator.config.policy_for_env(environment)
    decision = evaluator.verify(
        source, image_ref, for_promotion=True, profile=profile, policy=policy
    )

    registry = evaluator.config.registry_for_env(environment).default
    target_ref = build_target_ref(image_ref, environment, registry)
    result = PromotionResult(
        source_ref=image_ref,
        target_ref=target_ref,
        environment=environment,
        decision=decision,
    )

    if not decision.allow:
        logger.warning("Not promoting %s: verification status %s", image_ref, decision.status.value)
        return result

    if retag is not None:
        retag(image_ref, target_ref)
        result.retagged = True
        logger.info("Promoted %s to %s", image_ref, target_ref)
    return result
