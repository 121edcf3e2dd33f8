"""
acc Decision State Store

Every verification leaves a snapshot, on success and failure alike:

    .acc/state/last_verify.json
    .acc/state/verify/<digest>.json      (when the digest is known)

Snapshot layout:

    {
      "imageRef": "...",
      "status": "pass|warn|fail",
      "timestamp": "RFC3339 UTC",
      "profileUsed": "...",          (optional)
      "result": { ...Decision... }
    }

Writes go to a temporary file that is renamed into place, so readers
never observe a partially written snapshot. Concurrent writers are
last-writer-wins.
"""

import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

from .errors import AccError, StateNotFoundError, StatePersistError
from .logging_config import audit_log
from .util import normalize_digest, utc_rfc3339

logger = logging.getLogger(__name__)

STATE_RELDIR = os.path.join(".acc", "state")


def atomic_write_json(path: str, data: Dict[str, Any]) -> None:
    """Write JSON to path via a same-directory temp file and os.replace."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class DecisionStateStore:
    """Persists and reads decision snapshots under <project>/.acc/state."""

    def __init__(self, project_root: str = "."):
        self.project_root = project_root
        self.state_dir = os.path.join(project_root, STATE_RELDIR)

    @property
    def last_verify_path(self) -> str:
        return os.path.join(self.state_dir, "last_verify.json")

    @property
    def last_attestation_path(self) -> str:
        return os.path.join(self.state_dir, "last_attestation.json")

    def digest_path(self, digest: str) -> str:
        return os.path.join(self.state_dir, "verify", normalize_digest(digest) + ".json")

    def persist(
        self,
        image_ref: str,
        decision: Dict[str, Any],
        profile_used: Optional[str] = None,
        digest: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Write the snapshot for a decision.

        Raises:
            StatePersistError: the snapshot could not be written
        """
        snapshot = {
            "imageRef": image_ref,
            "status": decision.get("status", ""),
            "timestamp": decision.get("timestamp") or utc_rfc3339(),
            "result": decision,
        }
        if profile_used:
            snapshot["profileUsed"] = profile_used

        paths = [self.last_verify_path]
        if normalize_digest(digest):
            paths.append(self.digest_path(digest))

        for path in paths:
            try:
                atomic_write_json(path, snapshot)
            except (OSError, TypeError, ValueError) as e:
                audit_log.state_persist_failed(path, str(e))
                raise StatePersistError(f"failed to write decision state {path}: {e}") from e
        return snapshot

    def _read(self, path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            raise StateNotFoundError(f"no verification state found at {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                snapshot = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AccError(f"failed to read verification state {path}: {e}") from e
        if not isinstance(snapshot, dict):
            raise AccError(f"verification state {path} is not an object")
        return normalize_snapshot(snapshot)

    def load_last(self) -> Dict[str, Any]:
        """Read last_verify.json."""
        return self._read(self.last_verify_path)

    def load_for_digest(self, digest: str) -> Dict[str, Any]:
        return self._read(self.digest_path(digest))

    def load_last_attestation(self) -> Optional[Dict[str, Any]]:
        """The last_attestation.json pointer, or None if missing or unreadable."""
        try:
            with open(self.last_attestation_path, "r", encoding="utf-8") as f:
                pointer = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable attestation pointer %s: %s", self.last_attestation_path, e)
            return None
        return pointer if isinstance(pointer, dict) else None

    def explain(self, digest: Optional[str] = None) -> Dict[str, Any]:
        """Snapshot to explain: the one for digest if given, else the last one."""
        if digest:
            return self.load_for_digest(digest)
        return self.load_last()


def normalize_snapshot(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Fill defaults older snapshots may lack; result.input defaults to {}."""
    result = snapshot.get("result")
    if not isinstance(result, dict):
        result = {}
        snapshot["result"] = result
    if not isinstance(result.get("input"), dict):
        result["input"] = {}
    result.setdefault("violations", [])
    result.setdefault("warnings", [])
    return snapshot


def require_verified(store: DecisionStateStore, image_ref: str, digest: Optional[str] = None) -> Dict[str, Any]:
    """
    Gate a push on a prior verification of the same image.

    The image matches by reference, or else by digest when one is given.

    Raises:
        StateNotFoundError: nothing has been verified yet
        AccError: the last verification was for another image, or failed
    """
    snapshot = store.load_last()
    same_ref = snapshot.get("imageRef") == image_ref
    verified_digest = normalize_digest(snapshot["result"].get("artifactDigest"))
    same_digest = bool(verified_digest) and verified_digest == normalize_digest(digest)
    if not (same_ref or same_digest):
        raise AccError(
            f"last verification was for {snapshot.get('imageRef')!r}, not {image_ref!r}; "
            f"run 'acc verify {image_ref}' first"
        )
    if snapshot.get("status") == "fail":
        raise AccError(f"{image_ref} failed verification at {snapshot.get('timestamp')}")
    return snapshot
