"""
acc Trust Status Tests

Tests the per-image status summary read from decision snapshots and
attestations on disk.
"""

import json
import os
import unittest

from acc.attest import attestation_dir
from acc.output import OutputStyle, format_trust_status
from acc.state import DecisionStateStore
from acc.status import trust_status

from helpers import DIGEST, IMAGE, TempProject


def _decision(status="pass", violations=None, warnings=None):
    return {
        "status": status,
        "artifactRef": IMAGE,
        "artifactDigest": DIGEST,
        "sbomPresent": True,
        "violations": violations or [],
        "warnings": warnings or [],
        "timestamp": "2026-06-01T12:00:00Z",
    }


class TestTrustStatus(unittest.TestCase):

    def setUp(self):
        self.project = TempProject()
        self.store = DecisionStateStore(self.project.root)

    def tearDown(self):
        self.project.cleanup()

    def _attestation(self, *relpath):
        path = os.path.join(attestation_dir(self.project.root, IMAGE, DIGEST), *relpath)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"attestation": {}, "envelope": {}}, f)
        return path

    def test_never_verified_is_unknown(self):
        with self.assertLogs("acc.status", level="WARNING"):
            status = trust_status(self.project.root, IMAGE)
        self.assertFalse(status.known)
        self.assertEqual(status.exit_code(), 2)
        data = status.to_dict()
        self.assertEqual(data["schemaVersion"], "v0.2")
        self.assertEqual(data["status"], "unknown")
        self.assertEqual(data["attestations"], [])

    def test_last_verification_of_other_image_is_unknown(self):
        self.store.persist("registry.local/other:1", _decision())
        status = trust_status(self.project.root, IMAGE)
        self.assertEqual(status.status, "unknown")

    def test_digest_snapshot_preferred(self):
        self.store.persist(IMAGE, _decision("warn"), digest=DIGEST)
        self.store.persist("registry.local/other:1", _decision("fail"))
        status = trust_status(self.project.root, "registry.local/app:1.0", DIGEST)
        self.assertEqual(status.status, "warn")
        self.assertEqual(status.image_ref, IMAGE)

    def test_exit_codes(self):
        for decision_status, code in (("pass", 0), ("warn", 1), ("fail", 1)):
            with self.subTest(status=decision_status):
                self.store.persist(IMAGE, _decision(decision_status))
                self.assertEqual(trust_status(self.project.root, IMAGE).exit_code(), code)

    def test_summary_fields(self):
        violation = {"rule": "no-root-user", "severity": "high", "message": "root"}
        self.store.persist(IMAGE, _decision("fail", violations=[violation]), profile_used="baseline")
        local = self._attestation("a-attestation.json")
        cached = self._attestation("remote", "registry.local", "app", "b.json")

        data = trust_status(self.project.root, IMAGE).to_dict()
        self.assertEqual(data["profileUsed"], "baseline")
        self.assertTrue(data["sbomPresent"])
        self.assertEqual(data["violations"], [violation])
        self.assertEqual(data["timestamp"], "2026-06-01T12:00:00Z")
        self.assertEqual(sorted(data["attestations"]), sorted([local, cached]))

    def test_human_output(self):
        self.store.persist(IMAGE, _decision())
        self._attestation("a-attestation.json")
        text = format_trust_status(trust_status(self.project.root, IMAGE).to_dict(), OutputStyle(emoji=False))
        self.assertIn("Trust Status", text)
        self.assertIn("[OK] PASS", text)
        self.assertIn("SBOM:         present", text)
        self.assertIn("Attestations: 1 found", text)

    def test_human_output_unknown(self):
        text = format_trust_status({"imageRef": IMAGE, "status": "unknown"}, OutputStyle(emoji=False))
        self.assertIn("UNKNOWN", text)
        self.assertIn("acc verify", text)


if __name__ == "__main__":
    unittest.main()
