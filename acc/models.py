"""
Core data models for acc.

Violations are the common currency between the rule engine, the profile
resolver and the gates.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class Severity(str, Enum):
    """Violation severity."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFORMATIONAL = "informational"


class ViolationResult(str, Enum):
    """Whether a rule engine reported a hard failure or a warning."""
    FAIL = "fail"
    WARN = "warn"


class VerificationMode(str, Enum):
    """
    Gate pipeline mode.

    ENFORCE: the first blocking gate stops the pipeline (fail-fast)
    WARN: every gate runs and findings accumulate (fail-open)
    """
    ENFORCE = "enforce"
    WARN = "warn"


# Rule names emitted by the gates themselves
RULE_SBOM_REQUIRED = "sbom-required"
RULE_ATTESTATION_REQUIRED = "attestation-required-for-promotion"
RULE_POLICY_EVALUATION_ERROR = "policy-evaluation-error"


@dataclass(frozen=True)
class Violation:
    """A single policy finding."""
    rule: str
    severity: str = Severity.HIGH.value
    result: str = ViolationResult.FAIL.value
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "severity": self.severity,
            "result": self.result,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Violation':
        """
        Build a Violation from a rule-engine object.

        Missing fields get defaults so partial engine output is still
        usable: rule "policy-violation", severity "high", result "fail".
        """
        return cls(
            rule=str(data.get("rule") or "policy-violation"),
            severity=str(data.get("severity") or Severity.HIGH.value),
            result=str(data.get("result") or ViolationResult.FAIL.value),
            message=str(data.get("message") or ""),
        )

    @classmethod
    def critical(cls, rule: str, message: str) -> 'Violation':
        return cls(
            rule=rule,
            severity=Severity.CRITICAL.value,
            result=ViolationResult.FAIL.value,
            message=message,
        )
