"""
acc Hashing

All hashes use SHA-256 with lowercase hexadecimal output. Structured
values are hashed over their JCS canonical form.
"""

import hashlib
from typing import Any, Dict, List, Union

from .canonicalization import canonicalize
from .models import RULE_ATTESTATION_REQUIRED


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as lowercase hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 hash in prefixed form.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    return f"sha256:{sha256_hex(data)}"


def canonical_hash(obj: Any) -> str:
    """sha256:<hex> over the canonical JSON of obj."""
    return sha256_hash(canonicalize(obj))


def _violation_sort_key(v: Dict[str, Any]):
    return (
        v.get("rule", ""),
        v.get("severity", ""),
        v.get("result", ""),
        v.get("message", ""),
    )


def _sorted_violations(violations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted((dict(v) for v in violations), key=_violation_sort_key)


def _without_attestation_findings(violations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [v for v in violations if v.get("rule") != RULE_ATTESTATION_REQUIRED]


def results_payload(decision: Dict[str, Any]) -> Dict[str, Any]:
    """
    The subset of a serialized Decision that an attestation binds to.

    Attestation fields are excluded, and so are attestation threshold
    findings. When any were dropped the status is recomputed from what
    remains, so the hash is identical whether it is computed during the
    attestation gate or from the persisted decision afterwards.
    """
    all_violations = decision.get("violations") or []
    all_warnings = decision.get("warnings") or []
    violations = _without_attestation_findings(all_violations)
    warnings = _without_attestation_findings(all_warnings)

    status = decision.get("status", "")
    if len(violations) != len(all_violations) or len(warnings) != len(all_warnings):
        if violations:
            status = "fail"
        elif decision.get("mode") == "warn" and warnings:
            status = "warn"
        else:
            status = "pass"

    return {
        "status": status,
        "sbomPresent": bool(decision.get("sbomPresent", False)),
        "violations": _sorted_violations(violations),
        "warnings": _sorted_violations(warnings),
    }


def results_hash(decision: Dict[str, Any]) -> str:
    """
    Compute the verification results hash of a serialized Decision.

    Returns:
        Lowercase hex SHA-256 (no prefix), as embedded in attestations
    """
    return sha256_hex(canonicalize(results_payload(decision)))
