"""
Configuration module for acc.

Two layers:
- Process settings from environment variables (logging, output style,
  remote fetch tuning, project root)
- The project's trust configuration (acc.yaml), validated with pydantic
  and loaded from an explicit path
"""

import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .models import VerificationMode

# ============================================================
# Environment Configuration
# ============================================================

PROJECT_ROOT = os.getenv("ACC_PROJECT_ROOT", ".")

# Logging
LOG_LEVEL = os.getenv("ACC_LOG_LEVEL", "WARNING")
LOG_JSON = os.getenv("ACC_LOG_JSON", "false").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("ACC_LOG_FILE", "")

# Output
COLOR = os.getenv("ACC_COLOR", "auto")  # auto|always|never
EMOJI = os.getenv("ACC_EMOJI", "true").lower() in ("1", "true", "yes")

# Remote attestation fetch
REMOTE_TIMEOUT = float(os.getenv("ACC_REMOTE_TIMEOUT", "10"))
REMOTE_RETRIES = int(os.getenv("ACC_REMOTE_RETRIES", "3"))
REGISTRY_PLAIN_HTTP = os.getenv("ACC_REGISTRY_PLAIN_HTTP", "").lower() in ("1", "true", "yes")

# Rule engine
OPA_URL = os.getenv("ACC_OPA_URL", "")
OPA_TIMEOUT = float(os.getenv("ACC_OPA_TIMEOUT", "5"))

ATTESTATION_SOURCE_LOCAL = "local"
ATTESTATION_SOURCE_REMOTE = "remote"


# ============================================================
# Trust Configuration Models
# ============================================================

class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ProjectConfig(_ConfigModel):
    name: str = ""


class RegistryConfig(_ConfigModel):
    default: str = "localhost:5000"


class SBOMConfig(_ConfigModel):
    format: str = "spdx"

    @field_validator("format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in ("spdx", "cyclonedx"):
            raise ValueError("sbom.format must be 'spdx' or 'cyclonedx'")
        return value


class PolicyConfig(_ConfigModel):
    """Policy mode and whether run/push also require attestations."""
    mode: VerificationMode = VerificationMode.ENFORCE
    require_attestation: bool = Field(default=False, alias="requireAttestation")


class AttestationRequirements(_ConfigModel):
    """Threshold rules for the attestation gate."""
    enabled: bool = True
    min_count: int = Field(default=1, ge=0, alias="minCount")
    sources: List[str] = Field(default_factory=lambda: [ATTESTATION_SOURCE_LOCAL])
    require_digest_match: bool = Field(default=True, alias="requireDigestMatch")
    require_valid_schema: bool = Field(default=True, alias="requireValidSchema")
    require_results_hash_match: bool = Field(default=True, alias="requireResultsHashMatch")
    require_signature: bool = Field(default=True, alias="requireSignature")
    trusted_key_ids: List[str] = Field(default_factory=list, alias="trustedKeyIds")
    mode: VerificationMode = VerificationMode.ENFORCE

    @field_validator("sources")
    @classmethod
    def _known_sources(cls, value: List[str]) -> List[str]:
        for source in value:
            if source not in (ATTESTATION_SOURCE_LOCAL, ATTESTATION_SOURCE_REMOTE):
                raise ValueError(f"unknown attestation source '{source}' (use local or remote)")
        return value

    def uses_remote(self) -> bool:
        return ATTESTATION_SOURCE_REMOTE in self.sources


class TrustConfig(_ConfigModel):
    require_attestations: Optional[AttestationRequirements] = Field(
        default=None, alias="requireAttestations"
    )


class EnvConfig(_ConfigModel):
    policy: Optional[PolicyConfig] = None
    registry: Optional[RegistryConfig] = None


class GateConfig(_ConfigModel):
    """Project trust configuration (acc.yaml)."""
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    sbom: SBOMConfig = Field(default_factory=SBOMConfig)
    environments: Dict[str, EnvConfig] = Field(default_factory=dict)

    def policy_for_env(self, env: Optional[str]) -> PolicyConfig:
        """Environment-specific policy, falling back to the global one."""
        if env and env in self.environments and self.environments[env].policy is not None:
            return self.environments[env].policy
        return self.policy

    def registry_for_env(self, env: Optional[str]) -> RegistryConfig:
        if env and env in self.environments and self.environments[env].registry is not None:
            return self.environments[env].registry
        return self.registry

    def attestation_requirements(self) -> AttestationRequirements:
        """Configured requirements, or the defaults (one signed local attestation)."""
        return self.trust.require_attestations or AttestationRequirements()


# ============================================================
# Loaders
# ============================================================

def default_config(project_name: str = "") -> GateConfig:
    """Configuration used when no acc.yaml is given."""
    return GateConfig(project=ProjectConfig(name=project_name))


def parse_gate_config(data: Any, source: str = "<config>") -> GateConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: configuration must be a mapping")
    try:
        return GateConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{source}: invalid configuration: {e}") from e


def load_gate_config(path: str) -> GateConfig:
    """
    Load acc.yaml from an explicit path.

    Raises:
        ConfigError: unreadable or invalid file
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to read config {path}: {e}") from e
    return parse_gate_config(data, path)


# ============================================================
# Feature Flags
# ============================================================

def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("ACC_DEBUG", "").lower() in ("1", "true", "yes")
