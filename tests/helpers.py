"""Shared fixtures for the acc test suite."""

import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Tuple

from acc.attestations import Attestation
from acc.config import AttestationRequirements
from acc.errors import PolicyEvaluationError, WaiverLoadError
from acc.evidence import EvidenceSource
from acc.models import Violation
from acc.waivers import Waiver

DIGEST = "sha256:" + "ab" * 32
IMAGE = "registry.local/app@" + DIGEST


class TempProject:
    """A throwaway project directory with an .acc/ layout."""

    def __init__(self, name: str = "app"):
        self.root = tempfile.mkdtemp(prefix="acc-test-")
        self.name = name

    def path(self, *parts: str) -> str:
        return os.path.join(self.root, *parts)

    def write(self, relpath: str, content: str) -> str:
        path = self.path(relpath)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def add_sbom(self, fmt: str = "spdx") -> str:
        return self.write(os.path.join(".acc", "sbom", f"{self.name}.{fmt}.json"), '{"spdxVersion": "SPDX-2.3"}')

    def cleanup(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)


class FakeEvidenceSource(EvidenceSource):
    """In-memory evidence that records which evidence was requested."""

    def __init__(
        self,
        sbom: bool = True,
        violations: Optional[List[Violation]] = None,
        waivers: Optional[List[Waiver]] = None,
        attestations: Optional[List[Attestation]] = None,
        digest: Optional[str] = DIGEST,
        policy_error: Optional[str] = None,
        waiver_error: Optional[str] = None,
        fetch_errors: Optional[List[str]] = None,
    ):
        self._sbom = sbom
        self._violations = list(violations or [])
        self._waivers = list(waivers or [])
        self._attestations = list(attestations or [])
        self._digest = digest
        self._policy_error = policy_error
        self._waiver_error = waiver_error
        self._fetch_errors = list(fetch_errors or [])
        self.calls: List[str] = []

    def sbom_present(self, artifact_ref: str) -> bool:
        self.calls.append("sbom")
        return self._sbom

    def artifact_digest(self, artifact_ref: str) -> Optional[str]:
        return self._digest

    def policy_input(self, artifact_ref: str, digest: Optional[str], for_promotion: bool) -> Dict[str, Any]:
        self.calls.append("input")
        return {"sbom": {"present": self._sbom}, "promotion": for_promotion}

    def raw_violations(self, input_document: Dict[str, Any]) -> List[Violation]:
        self.calls.append("policy")
        if self._policy_error:
            raise PolicyEvaluationError(self._policy_error)
        return list(self._violations)

    def waivers(self) -> List[Waiver]:
        self.calls.append("waivers")
        if self._waiver_error:
            raise WaiverLoadError(self._waiver_error)
        return list(self._waivers)

    def attestations(
        self,
        artifact_ref: str,
        digest: Optional[str],
        requirements: AttestationRequirements
    ) -> Tuple[List[Attestation], List[str]]:
        self.calls.append("attestations")
        return list(self._attestations), list(self._fetch_errors)
