"""
acc Evidence Sources

The gate pulls its evidence through two seams:

- ViolationProducer: the rule engine. It receives a policy input document
  and returns raw violations. acc ships an OPA HTTP producer, the built-in
  default rules, and a static producer for precomputed results.
- EvidenceSource: SBOM presence, image digest, policy input, waivers and
  attestations for one artifact. ProjectEvidenceSource reads them from a
  project's .acc/ directory.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from . import config as settings
from .attestations import Attestation, LocalAttestationStore
from .config import AttestationRequirements, GateConfig, default_config
from .errors import PolicyEvaluationError, RemoteFetchError
from .models import Severity, Violation, ViolationResult
from .util import digest_from_ref
from .waivers import Waiver, load_project_waivers

logger = logging.getLogger(__name__)

SBOM_RELDIR = os.path.join(".acc", "sbom")


# ============================================================
# Rule engines
# ============================================================

class ViolationProducer(ABC):
    """A rule engine that turns a policy input document into violations."""

    @abstractmethod
    def produce(self, input_document: Dict[str, Any]) -> List[Violation]:
        """
        Evaluate rules against the input document.

        Raises:
            PolicyEvaluationError: the engine could not evaluate
        """
        pass


class StaticViolationProducer(ViolationProducer):
    """Returns a fixed list of violations (precomputed engine output)."""

    def __init__(self, violations: Optional[List[Violation]] = None):
        self._violations = list(violations or [])

    def produce(self, input_document: Dict[str, Any]) -> List[Violation]:
        return list(self._violations)

    @classmethod
    def from_document(cls, data: Any) -> 'StaticViolationProducer':
        """Accepts a list of violation objects or a {violations, warnings} result."""
        return cls(parse_engine_result(data))


class DefaultRulesProducer(ViolationProducer):
    """
    Built-in rules for projects without a rule engine.

    no-root-user: the image must declare a non-root USER.
    image-labels: images should carry labels (warning).
    """

    def produce(self, input_document: Dict[str, Any]) -> List[Violation]:
        image_config = input_document.get("config") or {}
        found = []

        user = str(image_config.get("User") or "")
        if user in ("", "root", "0"):
            message = {
                "": "Container runs as root (no USER directive found)",
                "root": "Container explicitly runs as root",
                "0": "Container runs as UID 0 (root)",
            }[user]
            found.append(Violation(
                rule="no-root-user",
                severity=Severity.HIGH.value,
                result=ViolationResult.FAIL.value,
                message=message,
            ))

        if not image_config.get("Labels"):
            found.append(Violation(
                rule="image-labels",
                severity=Severity.LOW.value,
                result=ViolationResult.WARN.value,
                message="Image has no labels (recommended for metadata)",
            ))
        return found


class OpaViolationProducer(ViolationProducer):
    """
    Evaluates rules with an OPA server over its data API.

    POSTs {"input": <document>} to the decision URL and reads
    result.violations (or result.deny) and result.warnings.
    """

    def __init__(
        self,
        url: str,
        timeout: float = settings.OPA_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def produce(self, input_document: Dict[str, Any]) -> List[Violation]:
        try:
            r = self._session.post(self.url, json={"input": input_document}, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise PolicyEvaluationError(f"policy evaluation via {self.url} failed: {e}") from e
        if not isinstance(body, dict):
            raise PolicyEvaluationError(f"policy evaluation via {self.url} returned {type(body).__name__}, not an object")
        return parse_engine_result(body.get("result"))


def parse_engine_result(result: Any) -> List[Violation]:
    """
    Normalize rule engine output into violations.

    Accepts a list of violation objects, or a mapping with "violations"
    (or "deny") and "warnings" lists. Entries under "warnings" default to
    result "warn". String entries become the message of a generic violation.
    """
    if result is None:
        return []
    if isinstance(result, list):
        return [_to_violation(item) for item in result]
    if not isinstance(result, dict):
        raise PolicyEvaluationError(f"unexpected policy result type: {type(result).__name__}")

    violations = [_to_violation(item) for item in _entries(result, "violations", "deny")]
    for item in _entries(result, "warnings", "warn"):
        v = _to_violation(item)
        if not isinstance(item, dict) or not item.get("result"):
            v = Violation(rule=v.rule, severity=v.severity, result=ViolationResult.WARN.value, message=v.message)
        violations.append(v)
    return violations


def _entries(result: Dict[str, Any], *names: str) -> List[Any]:
    for name in names:
        value = result.get(name)
        if not value:
            continue
        if not isinstance(value, list):
            raise PolicyEvaluationError(f"policy result field '{name}' must be a list")
        return value
    return []


def _to_violation(item: Any) -> Violation:
    if isinstance(item, dict):
        return Violation.from_dict(item)
    return Violation.from_dict({"message": str(item)})


# ============================================================
# Evidence sources
# ============================================================

class EvidenceSource(ABC):
    """Supplies the evidence for one verification."""

    @abstractmethod
    def sbom_present(self, artifact_ref: str) -> bool:
        pass

    @abstractmethod
    def artifact_digest(self, artifact_ref: str) -> Optional[str]:
        pass

    @abstractmethod
    def policy_input(self, artifact_ref: str, digest: Optional[str], for_promotion: bool) -> Dict[str, Any]:
        pass

    @abstractmethod
    def raw_violations(self, input_document: Dict[str, Any]) -> List[Violation]:
        """Raises PolicyEvaluationError when the rule engine fails."""
        pass

    @abstractmethod
    def waivers(self) -> List[Waiver]:
        """Raises WaiverLoadError when the waiver file is malformed."""
        pass

    @abstractmethod
    def attestations(
        self,
        artifact_ref: str,
        digest: Optional[str],
        requirements: AttestationRequirements
    ) -> Tuple[List[Attestation], List[str]]:
        """Return (attestations, fetch errors) from the required sources."""
        pass


DigestResolver = Callable[[str], Optional[str]]
ImageConfigProvider = Callable[[str], Dict[str, Any]]


class ProjectEvidenceSource(EvidenceSource):
    """
    Evidence from a project directory.

    Args:
        project_root: Directory containing .acc/
        gate_config: Project trust configuration
        producer: Rule engine (defaults to the built-in rules)
        digest_resolver: Maps an image ref to its digest; by default the
            digest is taken from 'name@sha256:...' references
        image_config_provider: Returns the image config (User, Labels)
        remote_fetcher: Object with fetch(image_ref, digest), used when
            remote attestations are required
    """

    def __init__(
        self,
        project_root: str = ".",
        gate_config: Optional[GateConfig] = None,
        producer: Optional[ViolationProducer] = None,
        digest_resolver: Optional[DigestResolver] = None,
        image_config_provider: Optional[ImageConfigProvider] = None,
        remote_fetcher: Any = None,
    ):
        self.project_root = project_root
        self.config = gate_config or default_config(os.path.basename(os.path.abspath(project_root)))
        self.producer = producer or DefaultRulesProducer()
        self._resolve_digest = digest_resolver or digest_from_ref
        self._image_config = image_config_provider
        self._remote_fetcher = remote_fetcher
        self._local = LocalAttestationStore(project_root)

    @property
    def sbom_path(self) -> str:
        name = self.config.project.name or os.path.basename(os.path.abspath(self.project_root))
        return os.path.join(self.project_root, SBOM_RELDIR, f"{name}.{self.config.sbom.format}.json")

    @property
    def sbom_ref(self) -> Optional[str]:
        return self.sbom_path if os.path.exists(self.sbom_path) else None

    def sbom_present(self, artifact_ref: str) -> bool:
        return os.path.exists(self.sbom_path)

    def artifact_digest(self, artifact_ref: str) -> Optional[str]:
        return self._resolve_digest(artifact_ref)

    def policy_input(self, artifact_ref: str, digest: Optional[str], for_promotion: bool) -> Dict[str, Any]:
        image_config = self._image_config(artifact_ref) if self._image_config else {}
        return {
            "artifact": {"ref": artifact_ref, "digest": digest or ""},
            "config": image_config,
            "sbom": {"present": self.sbom_present(artifact_ref)},
            "attestation": {"present": bool(digest) and bool(self._local.find(digest))},
            "promotion": for_promotion,
        }

    def raw_violations(self, input_document: Dict[str, Any]) -> List[Violation]:
        return self.producer.produce(input_document)

    def waivers(self) -> List[Waiver]:
        return load_project_waivers(self.project_root)

    def attestations(
        self,
        artifact_ref: str,
        digest: Optional[str],
        requirements: AttestationRequirements
    ) -> Tuple[List[Attestation], List[str]]:
        found: List[Attestation] = []
        errors: List[str] = []

        if settings.ATTESTATION_SOURCE_LOCAL in requirements.sources:
            found.extend(self._local.find(digest))

        if requirements.uses_remote():
            if self._remote_fetcher is None:
                errors.append("remote attestations required but no registry fetcher configured")
            else:
                try:
                    found.extend(self._remote_fetcher.fetch(artifact_ref, digest))
                except RemoteFetchError as e:
                    logger.warning("Remote attestation fetch failed: %s", e)
                    errors.append(str(e))
        return found, errors
