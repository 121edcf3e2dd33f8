"""
acc Profile Resolver

Applies a profile's allow-set and ignore-set to raw violations and
partitions them into blocking violations and visible warnings.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .models import Violation
from .profile import Profile


@dataclass
class Resolution:
    """Outcome of resolving raw violations against a profile."""
    violations: List[Violation] = field(default_factory=list)
    warnings: List[Violation] = field(default_factory=list)
    allow: bool = True


def resolve_violations(profile: Optional[Profile], violations: List[Violation]) -> Resolution:
    """
    Resolve raw violations against a profile.

    Without a profile every violation blocks. With one:

    1. If policies.allow is non-empty, rules outside it are dropped
       (exact, case-sensitive match).
    2. A violation is demoted if its rule name, or its lowercased severity,
       appears in violations.ignore (compared lowercased). Demoted
       violations are kept as warnings only when warnings.show is true.
    3. Everything else blocks.

    allow is True iff no blocking violations remain.
    """
    if profile is None:
        blocking = list(violations)
        return Resolution(violations=blocking, warnings=[], allow=not blocking)

    allow_set = set(profile.allow)
    ignore_set = {item.lower() for item in profile.ignore}

    blocking: List[Violation] = []
    warnings: List[Violation] = []

    for v in violations:
        if allow_set and v.rule not in allow_set:
            continue

        if v.rule in ignore_set or v.severity.lower() in ignore_set:
            if profile.warnings_show:
                warnings.append(v)
            continue

        blocking.append(v)

    return Resolution(violations=blocking, warnings=warnings, allow=not blocking)
