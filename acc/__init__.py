"""
acc: Trust Verification Gate

Version: 0.4.0

Decides whether a build artifact may run, be pushed, or be promoted,
from aggregated compliance evidence:

- SBOM presence
- rule-engine violations, filtered through a policy profile
- expiry of human-granted waivers
- for promotion, a threshold of signed attestations bound to the image
  digest and to the verification result

Every decision is persisted, pass or fail, and maps to an exit code
(0 pass, 1 fail, 2 warn).

Usage:
    from acc import (
        TrustGateEvaluator,
        ProjectEvidenceSource,
        load_gate_config,
        load_profile,
    )

    cfg = load_gate_config("acc.yaml")
    evaluator = TrustGateEvaluator(cfg, project_root=".")
    source = ProjectEvidenceSource(".", cfg)

    try:
        decision = evaluator.verify(source, "registry.local/app@sha256:...")
    except VerificationFailedError as e:
        # Blocked in enforce mode; e.decision was persisted
        decision = e.decision

    sys.exit(decision.exit_code())
"""

__version__ = "0.4.0"

from .canonicalization import canonicalize, canonicalize_str
from .hashing import sha256_hash, sha256_hex, canonical_hash, results_hash
from .keys import (
    KeyInfo,
    key_id,
    resolve_signing_key,
    ensure_signing_key,
    verify_ed25519,
)
from .models import Severity, Violation, ViolationResult, VerificationMode
from .errors import (
    AccError,
    VerificationFailedError,
    EvidenceUnavailableError,
    WaiverExpiredError,
    PolicyViolationError,
    AttestationThresholdUnmetError,
    KeyResolutionError,
    ProfileSchemaError,
    StatePersistError,
)
from .waivers import Waiver, load_waivers
from .profile import Profile, load_profile, parse_profile
from .resolver import Resolution, resolve_violations
from .config import (
    AttestationRequirements,
    GateConfig,
    PolicyConfig,
    default_config,
    load_gate_config,
)
from .attest import create_attestation, sign_attestation, verify_envelope
from .attestations import Attestation, ThresholdResult, evaluate_attestations
from .evidence import (
    EvidenceSource,
    ProjectEvidenceSource,
    ViolationProducer,
    StaticViolationProducer,
    OpaViolationProducer,
    DefaultRulesProducer,
)
from .gates import EvidenceBundle, GateName
from .evaluator import Decision, DecisionStatus, TrustGateEvaluator
from .state import DecisionStateStore
from .promote import promote
from .workload import push, run_workload
from .status import TrustStatus, trust_status
from .output import OutputStyle

__all__ = [
    # Canonicalization & hashing
    "canonicalize",
    "canonicalize_str",
    "sha256_hash",
    "sha256_hex",
    "canonical_hash",
    "results_hash",

    # Keys
    "KeyInfo",
    "key_id",
    "resolve_signing_key",
    "ensure_signing_key",
    "verify_ed25519",

    # Models
    "Severity",
    "Violation",
    "ViolationResult",
    "VerificationMode",

    # Errors
    "AccError",
    "VerificationFailedError",
    "EvidenceUnavailableError",
    "WaiverExpiredError",
    "PolicyViolationError",
    "AttestationThresholdUnmetError",
    "KeyResolutionError",
    "ProfileSchemaError",
    "StatePersistError",

    # Waivers & profiles
    "Waiver",
    "load_waivers",
    "Profile",
    "load_profile",
    "parse_profile",
    "Resolution",
    "resolve_violations",

    # Configuration
    "AttestationRequirements",
    "GateConfig",
    "PolicyConfig",
    "default_config",
    "load_gate_config",

    # Attestations
    "create_attestation",
    "sign_attestation",
    "verify_envelope",
    "Attestation",
    "ThresholdResult",
    "evaluate_attestations",

    # Evidence
    "EvidenceSource",
    "ProjectEvidenceSource",
    "ViolationProducer",
    "StaticViolationProducer",
    "OpaViolationProducer",
    "DefaultRulesProducer",

    # Evaluation
    "EvidenceBundle",
    "GateName",
    "Decision",
    "DecisionStatus",
    "TrustGateEvaluator",
    "DecisionStateStore",
    "promote",
    "push",
    "run_workload",
    "TrustStatus",
    "trust_status",
    "OutputStyle",
]
