"""
acc Waiver Registry

Waivers are human-approved, time-bound exemptions for a single rule,
stored in .acc/waivers.yaml:

    waivers:
      - ruleId: no-root-user
        justification: legacy base image, tracked in JIRA-123
        expiry: "2026-12-31T00:00:00Z"
        approvedBy: security-team

The gate only reads waivers; it never creates or edits them.
"""

import logging
import os
from datetime import date, datetime, timezone
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import WaiverLoadError
from .util import parse_rfc3339, utc_now

logger = logging.getLogger(__name__)

WAIVERS_RELPATH = os.path.join(".acc", "waivers.yaml")


class Waiver(BaseModel):
    """A time-bound exemption for one rule."""
    model_config = ConfigDict(populate_by_name=True)

    rule_id: str = Field(alias="ruleId")
    justification: str = ""
    expiry: str = ""
    approved_by: Optional[str] = Field(default=None, alias="approvedBy")

    @field_validator("expiry", mode="before")
    @classmethod
    def _expiry_as_text(cls, value):
        # YAML turns unquoted timestamps into datetime objects
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if value is None:
            return ""
        return value

    def expires_at(self) -> Optional[datetime]:
        """Parsed expiry, or None when there is none or it is unparsable."""
        if not self.expiry:
            return None
        try:
            return parse_rfc3339(self.expiry)
        except ValueError:
            return None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        Expiry check.

        - Empty expiry: never expires
        - Unparsable expiry: treated as expired (fail closed)
        - Otherwise: expired when now (UTC) is strictly after the expiry
        """
        if not self.expiry:
            return False
        expires = self.expires_at()
        if expires is None:
            return True
        now = now or utc_now()
        return now.astimezone(timezone.utc) > expires.astimezone(timezone.utc)


class WaiverFile(BaseModel):
    waivers: List[Waiver] = Field(default_factory=list)


def load_waivers(path: str) -> List[Waiver]:
    """
    Load waivers from a YAML file.

    A missing file means no waivers.

    Raises:
        WaiverLoadError: the file exists but cannot be read or parsed
    """
    if not os.path.exists(path):
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise WaiverLoadError(f"failed to read waivers from {path}: {e}") from e

    if data is None:
        return []

    try:
        waivers = WaiverFile.model_validate(data).waivers
    except ValidationError as e:
        raise WaiverLoadError(f"failed to parse waivers in {path}: {e}") from e

    logger.debug("Loaded %d waivers from %s", len(waivers), path)
    return waivers


def load_project_waivers(project_root: str = ".") -> List[Waiver]:
    return load_waivers(os.path.join(project_root, WAIVERS_RELPATH))


def expired_waivers(waivers: List[Waiver], now: Optional[datetime] = None) -> List[Waiver]:
    """Waivers whose expiry has passed."""
    now = now or utc_now()
    return [w for w in waivers if w.is_expired(now)]


def waiver_for_rule(
    waivers: List[Waiver],
    rule_id: str,
    now: Optional[datetime] = None
) -> Optional[Waiver]:
    """Return the first unexpired waiver covering rule_id, if any."""
    now = now or utc_now()
    for w in waivers:
        if w.rule_id == rule_id and not w.is_expired(now):
            return w
    return None
