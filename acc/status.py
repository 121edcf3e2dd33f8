"""
acc Trust Status

Summarizes what is already known about an image, read from its decision
snapshot and the attestations on disk. Nothing is re-verified.

Exit codes differ from verify: 0 pass, 1 fail or warn, 2 unknown (the
image was never verified).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .attestations import LocalAttestationStore
from .errors import StateNotFoundError
from .state import DecisionStateStore

logger = logging.getLogger(__name__)

STATUS_SCHEMA_VERSION = "v0.2"
STATUS_UNKNOWN = "unknown"


@dataclass
class TrustStatus:
    """Trust summary for one image."""
    image_ref: str
    status: str = STATUS_UNKNOWN
    profile_used: Optional[str] = None
    sbom_present: bool = False
    violations: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    attestations: List[str] = field(default_factory=list)
    timestamp: str = ""

    @property
    def known(self) -> bool:
        return self.status != STATUS_UNKNOWN

    def exit_code(self) -> int:
        if not self.known:
            return 2
        return 0 if self.status == "pass" else 1

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "schemaVersion": STATUS_SCHEMA_VERSION,
            "imageRef": self.image_ref,
            "status": self.status,
            "sbomPresent": self.sbom_present,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
            "attestations": list(self.attestations),
            "timestamp": self.timestamp,
        }
        if self.profile_used:
            d["profileUsed"] = self.profile_used
        return d


def _snapshot_for(store: DecisionStateStore, image_ref: str, digest: Optional[str]) -> Optional[Dict[str, Any]]:
    """The digest-scoped snapshot if there is one, else the last one if it is for image_ref."""
    if digest:
        try:
            return store.load_for_digest(digest)
        except StateNotFoundError:
            pass

    try:
        snapshot = store.load_last()
    except StateNotFoundError:
        return None
    if snapshot.get("imageRef") != image_ref:
        logger.info("Last verification was for %s, not %s", snapshot.get("imageRef"), image_ref)
        return None
    return snapshot


def _findings(result: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    return [v for v in result.get(key) or [] if isinstance(v, dict)]


def trust_status(project_root: str, image_ref: str, digest: Optional[str] = None) -> TrustStatus:
    """
    Build the trust status of an image.

    Attestations are listed from the project directory, including ones
    cached from a registry.

    Raises:
        AccError: a snapshot exists but cannot be read
    """
    snapshot = _snapshot_for(DecisionStateStore(project_root), image_ref, digest)
    if snapshot is None:
        logger.warning("No verification state found for %s", image_ref)
        return TrustStatus(image_ref=image_ref)

    result = snapshot.get("result") or {}
    digest = digest or result.get("artifactDigest")
    found = LocalAttestationStore(project_root).find(digest, include_cached=True)

    return TrustStatus(
        image_ref=snapshot.get("imageRef") or image_ref,
        status=snapshot.get("status") or STATUS_UNKNOWN,
        profile_used=snapshot.get("profileUsed"),
        sbom_present=result.get("sbomPresent") is True,
        violations=_findings(result, "violations"),
        warnings=_findings(result, "warnings"),
        attestations=[a.location for a in found],
        timestamp=snapshot.get("timestamp") or "",
    )
