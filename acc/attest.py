"""
acc Attestations: creation and envelope signing

An attestation binds a verification result to an image. It is signed
into an envelope:

    {
      "attestation": {...},
      "envelope": {
        "alg": "ed25519",
        "keyId": "ed25519:...",
        "publicKey": "<base64>",
        "canon": "jcs",
        "payloadHash": "sha256:<hex of JCS(attestation)>",
        "signature": "<base64 Ed25519 over JCS(attestation)>"
      }
    }
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from . import __version__
from .canonicalization import canonicalize
from .errors import AccError, StateNotFoundError
from .hashing import results_hash, sha256_hash
from .keys import KeyInfo, ensure_signing_key, key_id, verify_ed25519
from .state import DecisionStateStore, atomic_write_json
from .util import b64d, b64e, normalize_digest, sanitize_ref, utc_now, utc_rfc3339

logger = logging.getLogger(__name__)

ATTESTATION_SCHEMA_VERSION = "v0.1"
ATTESTATIONS_RELDIR = os.path.join(".acc", "attestations")
ENVELOPE_ALG = "ed25519"
ENVELOPE_CANON = "jcs"
POLICY_PACK = ".acc/policy"


def sign_attestation(attestation: Dict[str, Any], key: KeyInfo) -> Dict[str, Any]:
    """Wrap an attestation in a signed envelope."""
    payload = canonicalize(attestation)
    return {
        "attestation": attestation,
        "envelope": {
            "alg": ENVELOPE_ALG,
            "keyId": key.key_id,
            "publicKey": key.public_key_b64,
            "canon": ENVELOPE_CANON,
            "payloadHash": sha256_hash(payload),
            "signature": b64e(key.sign(payload)),
        },
    }


@dataclass
class EnvelopeCheck:
    """Outcome of verifying an envelope signature."""
    valid: bool
    key_id: Optional[str] = None
    reason: str = ""


def verify_envelope(attestation: Dict[str, Any], envelope: Dict[str, Any]) -> EnvelopeCheck:
    """
    Verify an attestation envelope.

    Checks, in order: algorithm and canonicalization scheme, that keyId is
    derived from the embedded public key, that payloadHash matches the JCS
    of the attestation, and the Ed25519 signature itself.
    """
    if not isinstance(envelope, dict):
        return EnvelopeCheck(False, reason="envelope is not an object")

    kid = envelope.get("keyId") or ""
    if envelope.get("alg") != ENVELOPE_ALG:
        return EnvelopeCheck(False, kid, f"unsupported alg {envelope.get('alg')!r}")
    if envelope.get("canon") != ENVELOPE_CANON:
        return EnvelopeCheck(False, kid, f"unsupported canon {envelope.get('canon')!r}")

    public_key_b64 = envelope.get("publicKey") or ""
    signature_b64 = envelope.get("signature") or ""
    payload_hash = envelope.get("payloadHash") or ""
    fields = (kid, public_key_b64, signature_b64, payload_hash)
    if not all(isinstance(f, str) and f for f in fields):
        return EnvelopeCheck(False, kid if isinstance(kid, str) else None, "envelope is missing required fields")

    try:
        public_key = b64d(public_key_b64)
    except ValueError:
        return EnvelopeCheck(False, kid, "publicKey is not base64")
    if len(public_key) != 32:
        return EnvelopeCheck(False, kid, "publicKey has wrong length")
    if key_id(public_key) != kid:
        return EnvelopeCheck(False, kid, "keyId does not match publicKey")

    try:
        payload = canonicalize(attestation)
    except ValueError as e:
        return EnvelopeCheck(False, kid, f"attestation cannot be canonicalized: {e}")
    if sha256_hash(payload) != payload_hash:
        return EnvelopeCheck(False, kid, "payloadHash does not match attestation")

    if not verify_ed25519(signature_b64, payload, public_key_b64):
        return EnvelopeCheck(False, kid, "signature verification failed")
    return EnvelopeCheck(True, kid)


def build_attestation(
    image_ref: str,
    image_digest: Optional[str],
    status: str,
    verification_results_hash: str,
    policy_mode: str,
    sbom_ref: Optional[str] = None,
    git_commit: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an unsigned v0.1 attestation document."""
    subject = {"imageRef": image_ref}
    if image_digest:
        subject["imageDigest"] = image_digest

    evidence = {
        "policyPack": POLICY_PACK,
        "policyMode": policy_mode,
        "verificationStatus": status,
        "verificationResultsHash": verification_results_hash,
    }
    if sbom_ref:
        evidence["sbomRef"] = sbom_ref

    metadata = {"tool": "acc", "toolVersion": __version__}
    if git_commit:
        metadata["gitCommit"] = git_commit

    return {
        "schemaVersion": ATTESTATION_SCHEMA_VERSION,
        "command": "attest",
        "timestamp": timestamp or utc_rfc3339(),
        "subject": subject,
        "evidence": evidence,
        "metadata": metadata,
    }


def attestation_dir(project_root: str, image_ref: str, image_digest: Optional[str]) -> str:
    """Directory for an image's attestations: first 12 digest chars, else the sanitized ref."""
    digest = normalize_digest(image_digest)
    name = digest[:12] if digest else sanitize_ref(image_ref)
    return os.path.join(project_root, ATTESTATIONS_RELDIR, name)


@dataclass
class AttestResult:
    output_path: str
    document: Dict[str, Any]
    key_created: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"outputPath": self.output_path, "attestation": self.document}


def create_attestation(
    image_ref: str,
    project_root: str = ".",
    image_digest: Optional[str] = None,
    policy_mode: str = "enforce",
    sbom_ref: Optional[str] = None,
    git_commit: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AttestResult:
    """
    Attest the last verification of image_ref.

    Reads the persisted decision, refuses if it is for a different image,
    signs the attestation with the project key (generated on first use) and
    writes it under .acc/attestations/.

    Raises:
        StateNotFoundError: no verification has been run
        AccError: the last verification was for a different image
        KeyResolutionError: a configured key is unusable
    """
    store = DecisionStateStore(project_root)
    try:
        snapshot = store.load_last()
    except StateNotFoundError as e:
        raise StateNotFoundError(
            f"verification state not found; run 'acc verify {image_ref}' first"
        ) from e

    if snapshot.get("imageRef") != image_ref:
        raise AccError(
            f"last verification was for {snapshot.get('imageRef')!r}, not {image_ref!r}; "
            f"run 'acc verify {image_ref}' first"
        )

    decision = snapshot.get("result") or {}
    image_digest = image_digest or decision.get("artifactDigest")

    attestation = build_attestation(
        image_ref=image_ref,
        image_digest=image_digest,
        status=snapshot.get("status", ""),
        verification_results_hash=results_hash(decision),
        policy_mode=policy_mode,
        sbom_ref=sbom_ref,
        git_commit=git_commit,
    )

    key, created = ensure_signing_key(project_root, environ)
    document = sign_attestation(attestation, key)

    out_dir = attestation_dir(project_root, image_ref, image_digest)
    filename = utc_now().strftime("%Y%m%d-%H%M%S") + "-attestation.json"
    output_path = os.path.join(out_dir, filename)
    atomic_write_json(output_path, document)

    pointer = {
        "imageRef": image_ref,
        "imageDigest": image_digest or "",
        "timestamp": attestation["timestamp"],
        "path": output_path,
        "keyId": key.key_id,
    }
    try:
        atomic_write_json(store.last_attestation_path, pointer)
    except OSError as e:
        logger.warning("Failed to update last attestation pointer: %s", e)

    logger.info("Wrote attestation for %s to %s", image_ref, output_path)
    return AttestResult(output_path=output_path, document=document, key_created=created)
