"""
Human-readable output for acc.

Color and emoji are an explicit OutputStyle passed to every formatter,
so rendering never depends on process-global state.
"""

import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TextIO

_ANSI = {
    "success": "\033[32m",
    "warning": "\033[33m",
    "error": "\033[31m",
    "info": "\033[34m",
    "trust": "\033[36m",
}
_RESET = "\033[0m"

_SYMBOLS = {
    "success": ("✔", "[OK]"),
    "warning": ("⚠", "[WARN]"),
    "error": ("✖", "[FAIL]"),
    "info": ("ℹ", "[INFO]"),
    "trust": ("🔐", "[TRUST]"),
}


@dataclass(frozen=True)
class OutputStyle:
    """Rendering options for human output."""
    color: bool = False
    emoji: bool = True

    @classmethod
    def from_settings(cls, color_mode: str = "auto", emoji: bool = True,
                      stream: Optional[TextIO] = None) -> 'OutputStyle':
        """
        Resolve a color mode (auto|always|never) against a stream.

        auto enables color only for a TTY and when NO_COLOR is unset.
        """
        stream = stream or sys.stdout
        if color_mode == "always":
            color = True
        elif color_mode == "never":
            color = False
        else:
            color = not os.getenv("NO_COLOR") and hasattr(stream, "isatty") and stream.isatty()
        return cls(color=bool(color), emoji=emoji)

    def _fmt(self, kind: str, msg: str) -> str:
        symbol = _SYMBOLS[kind][0 if self.emoji else 1]
        text = f"{symbol} {msg}"
        if self.color:
            return f"{_ANSI[kind]}{text}{_RESET}"
        return text

    def success(self, msg: str) -> str:
        return self._fmt("success", msg)

    def warning(self, msg: str) -> str:
        return self._fmt("warning", msg)

    def error(self, msg: str) -> str:
        return self._fmt("error", msg)

    def info(self, msg: str) -> str:
        return self._fmt("info", msg)

    def trust(self, msg: str) -> str:
        return self._fmt("trust", msg)

    def status(self, status: str) -> str:
        kind = {"pass": "success", "warn": "warning", "fail": "error"}.get(status, "info")
        return self._fmt(kind, status.upper())


def _violation_lines(title: str, violations: List[Dict[str, Any]]) -> List[str]:
    lines = [f"{title}:"]
    for i, v in enumerate(violations, 1):
        lines.append(f"  {i}. [{v.get('severity', '')}] {v.get('rule', '')}")
        if v.get("message"):
            lines.append(f"     {v['message']}")
    return lines


def format_decision(decision: Dict[str, Any], style: OutputStyle) -> str:
    """Summary of a serialized Decision, as printed after verify."""
    lines = [f"Decision: {style.status(decision.get('status', ''))}"]

    if decision.get("sbomPresent"):
        lines.append(style.success("SBOM: Present"))
    else:
        lines.append(style.error("SBOM: Missing"))

    violations = decision.get("violations") or []
    warnings = decision.get("warnings") or []
    waived = decision.get("waived") or []

    if violations:
        lines.extend(_violation_lines("Violations", violations))
    if warnings:
        lines.extend(_violation_lines("Warnings", warnings))
    if waived:
        lines.append(style.info(f"Waived: {', '.join(v.get('rule', '') for v in waived)}"))

    result = decision.get("attestationResult")
    if result:
        lines.append(format_threshold(result, style))
    return "\n".join(lines)


def format_threshold(result: Dict[str, Any], style: OutputStyle) -> str:
    summary = f"Attestations: {result.get('validCount', 0)} valid of {result.get('minCount', 0)} required"
    if result.get("met"):
        return style.success(summary)
    if result.get("advisory"):
        return style.warning(summary + " (advisory)")
    return style.error(summary)


def format_explanation(snapshot: Dict[str, Any], style: OutputStyle) -> str:
    """Developer-facing explanation of a persisted snapshot."""
    lines = [style.trust("Last Verification Decision"), ""]
    lines.append(f"Image:      {snapshot.get('imageRef', '')}")
    lines.append(f"Time:       {snapshot.get('timestamp', '')}")
    if snapshot.get("profileUsed"):
        lines.append(f"Profile:    {snapshot['profileUsed']}")
    lines.append(f"Decision:   {style.status(snapshot.get('status', ''))}")
    lines.append("")

    result = snapshot.get("result") or {}
    if not result.get("status"):
        lines.append(style.warning("No detailed results available"))
        return "\n".join(lines)

    lines.append(style.success("SBOM: Present") if result.get("sbomPresent") else style.error("SBOM: Missing"))
    considered = result.get("attestationsConsidered") or []
    if considered:
        lines.append(style.success(f"Attestations: {len(considered)} considered"))
    else:
        lines.append(style.warning("Attestations: None"))
    lines.append("")

    violations = result.get("violations") or []
    if violations:
        lines.extend(_violation_lines("Policy Violations", violations))
        lines.append("")
        lines.append("Remediation:")
        lines.append("  - Review the rules reported above")
        lines.append("  - Fix violations in the Dockerfile or build process")
        lines.append("  - Re-run 'acc verify'")
        lines.append("")

    warnings = result.get("warnings") or []
    if warnings:
        lines.extend(_violation_lines("Warnings", warnings))
        lines.append("")

    policy_result = result.get("policyResult") or {}
    if "allow" in policy_result:
        lines.append(style.success("Policy: Allowed") if policy_result["allow"] else style.error("Policy: Denied"))

    input_doc = result.get("input") or {}
    if input_doc:
        lines.append("")
        lines.append("Policy input:")
        for key in sorted(input_doc):
            lines.append(f"  {key}: {input_doc[key]}")
    return "\n".join(lines)


def format_trust_status(status: Dict[str, Any], style: OutputStyle) -> str:
    """Trust status summary; an unknown image gets a hint to verify it."""
    lines = [style.trust("Trust Status"), ""]
    lines.append(f"Image:         {status.get('imageRef', '')}")
    if status.get("status") == "unknown":
        lines.append(f"Status:        {style.status('unknown')}")
        lines.append("")
        lines.append(style.warning("No verification state found; run 'acc verify' first"))
        return "\n".join(lines)

    lines.append(f"Last Verified: {status.get('timestamp', '')}")
    lines.append(f"Status:        {style.status(status.get('status', ''))}")
    if status.get("profileUsed"):
        lines.append(f"Profile:       {status['profileUsed']}")
    lines.append("")

    lines.append("Artifacts:")
    lines.append("  SBOM:         " + ("present" if status.get("sbomPresent") else "not found"))
    attestations = status.get("attestations") or []
    lines.append("  Attestations: " + (f"{len(attestations)} found" if attestations else "none"))

    violations = status.get("violations") or []
    if violations:
        lines.append("")
        lines.extend(_violation_lines("Policy Violations", violations))
    warnings = status.get("warnings") or []
    if warnings:
        lines.append("")
        lines.extend(_violation_lines("Warnings", warnings))
    return "\n".join(lines)
