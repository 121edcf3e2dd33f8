"""
acc Attestation Threshold Evaluator

Decides whether enough valid attestations exist for an image. Each
candidate is checked for:

- a valid Ed25519 envelope signature (optionally from a trusted key)
- a subject digest matching the image being gated
- the required schema fields
- a verificationResultsHash matching the decision being gated

The threshold is met when the number of valid attestations from the
configured sources reaches minCount.
"""

import glob
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .attest import ATTESTATIONS_RELDIR, verify_envelope
from .config import ATTESTATION_SOURCE_LOCAL, ATTESTATION_SOURCE_REMOTE, AttestationRequirements
from .logging_config import audit_log
from .models import VerificationMode
from .util import normalize_digest

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("schemaVersion", "timestamp", "subject", "evidence")
REMOTE_CACHE_DIR = "remote"


@dataclass
class Attestation:
    """An attestation document and where it came from."""
    source: str
    location: str
    document: Dict[str, Any]

    @property
    def payload(self) -> Dict[str, Any]:
        """The attestation body, unwrapping a signed envelope if present."""
        if isinstance(self.document.get("attestation"), dict):
            return self.document["attestation"]
        return self.document

    @property
    def envelope(self) -> Optional[Dict[str, Any]]:
        envelope = self.document.get("envelope")
        return envelope if isinstance(envelope, dict) else None

    def subject_digest(self) -> str:
        subject = self.payload.get("subject")
        if not isinstance(subject, dict):
            return ""
        digest = subject.get("imageDigest")
        return digest if isinstance(digest, str) else ""

    def results_hash(self) -> str:
        evidence = self.payload.get("evidence")
        if not isinstance(evidence, dict):
            return ""
        value = evidence.get("verificationResultsHash")
        return value if isinstance(value, str) else ""


@dataclass
class AttestationCheck:
    """Per-attestation validation detail."""
    location: str
    source: str
    signature_valid: Optional[bool] = None
    digest_match: Optional[bool] = None
    schema_valid: Optional[bool] = None
    results_hash_match: Optional[bool] = None
    key_id: Optional[str] = None
    reasons: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        checks = (self.signature_valid, self.digest_match, self.schema_valid, self.results_hash_match)
        return all(c is not False for c in checks)

    def to_dict(self) -> Dict[str, Any]:
        d = {"path": self.location, "source": self.source, "valid": self.valid}
        for name, value in (
            ("signatureValid", self.signature_valid),
            ("digestMatch", self.digest_match),
            ("schemaValid", self.schema_valid),
            ("resultsHashMatch", self.results_hash_match),
        ):
            if value is not None:
                d[name] = value
        if self.key_id:
            d["keyId"] = self.key_id
        if self.reasons:
            d["reasons"] = list(self.reasons)
        return d


@dataclass
class ThresholdResult:
    """Outcome of the threshold evaluation."""
    met: bool
    considered_count: int = 0
    valid_count: int = 0
    min_count: int = 0
    advisory: bool = False
    details: List[AttestationCheck] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "met": self.met,
            "advisory": self.advisory,
            "minCount": self.min_count,
            "consideredCount": self.considered_count,
            "validCount": self.valid_count,
            "details": [d.to_dict() for d in self.details],
        }


def has_valid_schema(payload: Dict[str, Any]) -> bool:
    """Required top-level fields are present and non-empty."""
    return all(payload.get(name) for name in REQUIRED_FIELDS)


def check_attestation(
    attestation: Attestation,
    requirements: AttestationRequirements,
    artifact_digest: Optional[str],
    results_hash: Optional[str],
) -> AttestationCheck:
    """Run every enabled check against one attestation."""
    check = AttestationCheck(location=attestation.location, source=attestation.source)
    payload = attestation.payload

    if requirements.require_signature:
        envelope = attestation.envelope
        if envelope is None:
            check.signature_valid = False
            check.reasons.append("unsigned attestation")
        else:
            outcome = verify_envelope(payload, envelope)
            check.key_id = outcome.key_id
            check.signature_valid = outcome.valid
            if not outcome.valid:
                check.reasons.append(outcome.reason)
            elif requirements.trusted_key_ids and outcome.key_id not in requirements.trusted_key_ids:
                check.signature_valid = False
                check.reasons.append(f"key {outcome.key_id} is not trusted")

    if requirements.require_valid_schema:
        check.schema_valid = has_valid_schema(payload)
        if not check.schema_valid:
            check.reasons.append("missing required fields")

    if requirements.require_digest_match:
        expected = normalize_digest(artifact_digest)
        actual = normalize_digest(attestation.subject_digest())
        check.digest_match = bool(expected) and expected == actual
        if not check.digest_match:
            check.reasons.append("subject digest does not match image")

    if requirements.require_results_hash_match:
        check.results_hash_match = bool(results_hash) and attestation.results_hash() == results_hash
        if not check.results_hash_match:
            check.reasons.append("verification results hash does not match")

    return check


def evaluate_attestations(
    requirements: AttestationRequirements,
    attestations: List[Attestation],
    artifact_digest: Optional[str],
    results_hash: Optional[str],
) -> ThresholdResult:
    """
    Evaluate the attestation threshold.

    Disabled requirements are trivially met. Otherwise only attestations
    from the configured sources are considered, and met means
    valid >= minCount. An unmet threshold under mode=warn is advisory.
    """
    if not requirements.enabled:
        return ThresholdResult(met=True, min_count=requirements.min_count)

    sources = set(requirements.sources)
    considered = [a for a in attestations if a.source in sources]
    details = [
        check_attestation(a, requirements, artifact_digest, results_hash)
        for a in considered
    ]
    valid_count = sum(1 for d in details if d.valid)
    met = valid_count >= requirements.min_count

    for d in details:
        if not d.valid:
            logger.info("Attestation %s rejected: %s", d.location, "; ".join(d.reasons))
        if d.signature_valid is False:
            audit_log.security_event(
                "attestation_signature_rejected",
                severity="high",
                location=d.location,
                key_id=d.key_id,
                reasons=d.reasons,
            )

    return ThresholdResult(
        met=met,
        considered_count=len(considered),
        valid_count=valid_count,
        min_count=requirements.min_count,
        advisory=not met and requirements.mode == VerificationMode.WARN,
        details=details,
    )


class LocalAttestationStore:
    """Reads attestations from <project>/.acc/attestations."""

    def __init__(self, project_root: str = "."):
        self.root = os.path.join(project_root, ATTESTATIONS_RELDIR)

    def find(self, artifact_digest: Optional[str] = None, include_cached: bool = False) -> List[Attestation]:
        """
        Attestations for a digest, or every local attestation when the
        digest is unknown. The remote cache directory is excluded unless
        include_cached is set. Unreadable files are skipped with a warning.
        """
        digest = normalize_digest(artifact_digest)
        if digest:
            pattern = os.path.join(self.root, digest[:12], "**", "*.json")
        else:
            pattern = os.path.join(self.root, "**", "*.json")

        found = []
        for path in sorted(glob.glob(pattern, recursive=True)):
            cached = REMOTE_CACHE_DIR in os.path.relpath(path, self.root).split(os.sep)
            if cached and not include_cached:
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    document = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Skipping unreadable attestation %s: %s", path, e)
                continue
            if not isinstance(document, dict):
                logger.warning("Skipping attestation %s: not a JSON object", path)
                continue
            source = ATTESTATION_SOURCE_REMOTE if cached else ATTESTATION_SOURCE_LOCAL
            found.append(Attestation(source=source, location=path, document=document))
        return found
