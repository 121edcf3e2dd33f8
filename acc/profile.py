"""
acc Policy Profiles

A profile is a named, versioned filter applied to raw rule-engine
violations. Profiles live in .acc/profiles/<name>.yaml:

    schemaVersion: 1
    name: baseline
    description: Baseline production profile
    policies:
      allow: [no-root-user, sbom-required]
    violations:
      ignore: [informational, image-labels]
    warnings:
      show: true

Parsing is strict: unknown fields at any level are rejected, and any
schema problem fails closed with ProfileSchemaError.
"""

import os
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from .errors import ProfileSchemaError

PROFILES_RELDIR = os.path.join(".acc", "profiles")
SUPPORTED_SCHEMA_VERSION = 1


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ProfilePolicies(_StrictModel):
    allow: List[str] = Field(default_factory=list)


class ProfileViolations(_StrictModel):
    ignore: List[str] = Field(default_factory=list)


class ProfileWarnings(_StrictModel):
    show: bool = False


class Profile(_StrictModel):
    """A policy profile (schemaVersion 1)."""
    schema_version: StrictInt = Field(default=0, alias="schemaVersion")
    name: str = ""
    description: str = ""
    policies: ProfilePolicies = Field(default_factory=ProfilePolicies)
    violations: ProfileViolations = Field(default_factory=ProfileViolations)
    warnings: ProfileWarnings = Field(default_factory=ProfileWarnings)

    @property
    def allow(self) -> List[str]:
        return self.policies.allow

    @property
    def ignore(self) -> List[str]:
        return self.violations.ignore

    @property
    def warnings_show(self) -> bool:
        return self.warnings.show


def validate_profile(profile: Profile) -> None:
    """
    Semantic checks beyond the field schema.

    Raises:
        ProfileSchemaError: on the first problem found
    """
    if profile.schema_version != SUPPORTED_SCHEMA_VERSION:
        raise ProfileSchemaError(
            f"unsupported schemaVersion: {profile.schema_version} "
            f"(expected {SUPPORTED_SCHEMA_VERSION})"
        )
    if not profile.name:
        raise ProfileSchemaError("name is required")
    if not profile.description:
        raise ProfileSchemaError("description is required")
    for i, rule in enumerate(profile.allow):
        if not rule.strip():
            raise ProfileSchemaError(f"policies.allow[{i}]: empty rule name not allowed")
    for i, item in enumerate(profile.ignore):
        if not item.strip():
            raise ProfileSchemaError(f"violations.ignore[{i}]: empty value not allowed")


def parse_profile(data: Any, source: Optional[str] = None) -> Profile:
    """Validate a decoded YAML document as a Profile."""
    if not isinstance(data, dict):
        raise ProfileSchemaError("profile must be a mapping", source)
    try:
        profile = Profile.model_validate(data)
    except ValidationError as e:
        raise ProfileSchemaError(_describe_validation_error(e), source) from e
    try:
        validate_profile(profile)
    except ProfileSchemaError as e:
        raise ProfileSchemaError(str(e), source) from e
    return profile


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        if item.get("type") == "extra_forbidden":
            problems.append(f"unknown field '{location}'")
        else:
            problems.append(f"{location}: {item.get('msg')}")
    return "; ".join(problems)


def resolve_profile_path(name_or_path: str, project_root: str = ".") -> str:
    """
    Map a profile argument to a file path.

    Anything containing a path separator or ending in .yaml/.yml is a path;
    a bare name resolves to .acc/profiles/<name>.yaml.
    """
    if "/" in name_or_path or name_or_path.endswith((".yaml", ".yml")):
        return name_or_path
    return os.path.join(project_root, PROFILES_RELDIR, name_or_path + ".yaml")


def load_profile(name_or_path: str, project_root: str = ".") -> Profile:
    """
    Load and validate a profile by name or path.

    Raises:
        ProfileSchemaError: missing, unreadable or invalid profile
    """
    path = resolve_profile_path(name_or_path, project_root)
    if not os.path.exists(path):
        raise ProfileSchemaError(f"profile not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ProfileSchemaError(f"failed to parse profile: {e}", path) from e
    return parse_profile(data, path)
