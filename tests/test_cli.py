"""
acc CLI Tests

Runs the command line entry point in-process against a temporary
project and checks exit codes and JSON output.
"""

import io
import json
import os
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock

from acc.cli import run
from acc.errors import RemoteFetchError, RemotePublishError
from acc.hashing import canonical_hash
from acc.keys import ENV_SIGNING_KEY, ENV_SIGNING_KEY_FILE

from helpers import DIGEST, IMAGE, TempProject


class CliTestCase(unittest.TestCase):

    def setUp(self):
        self.project = TempProject(name="app")
        self.project.write("acc.yaml", "project:\n  name: app\n")
        self.clean = self.project.write("clean.json", "[]")
        self.image_config = self.project.write("image.json", json.dumps({"User": "1000", "Labels": {"a": "b"}}))

        env = mock.patch.dict(os.environ)
        env.start()
        self.addCleanup(env.stop)
        for name in (ENV_SIGNING_KEY, ENV_SIGNING_KEY_FILE, "ACC_OPA_URL"):
            os.environ.pop(name, None)

        logging_patch = mock.patch("acc.cli.configure_logging")
        logging_patch.start()
        self.addCleanup(logging_patch.stop)

    def tearDown(self):
        self.project.cleanup()

    def acc(self, *argv):
        """Run acc; returns (exit code, stdout, stderr)."""
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = run(["--project-root", self.project.root, "--color", "never", *argv])
        return code, out.getvalue(), err.getvalue()

    def verify_clean(self, *extra):
        return self.acc(
            "verify", IMAGE, "--json",
            "--config", self.project.path("acc.yaml"),
            "--violations", self.clean,
            *extra
        )


class TestVerifyCommand(CliTestCase):
    """acc verify"""

    def test_missing_sbom_exits_1(self):
        code, out, err = self.verify_clean()
        self.assertEqual(code, 1)
        decision = json.loads(out)
        self.assertEqual(decision["status"], "fail")
        self.assertEqual(decision["violations"][0]["rule"], "sbom-required")
        self.assertIn("SBOM not found", err)

    def test_pass_exits_0(self):
        self.project.add_sbom()
        code, out, _ = self.verify_clean()
        self.assertEqual(code, 0)
        decision = json.loads(out)
        self.assertEqual(decision["status"], "pass")
        self.assertEqual(decision["artifactDigest"], DIGEST)

    def test_default_rules_with_image_config(self):
        self.project.add_sbom()
        code, out, _ = self.acc(
            "verify", IMAGE, "--json",
            "--config", self.project.path("acc.yaml"),
            "--image-config", self.image_config,
        )
        self.assertEqual(code, 0)

    def test_default_rules_block_root(self):
        self.project.add_sbom()
        code, out, _ = self.acc("verify", IMAGE, "--json", "--config", self.project.path("acc.yaml"))
        self.assertEqual(code, 1)
        self.assertEqual([v["rule"] for v in json.loads(out)["violations"]], ["no-root-user"])

    def test_warn_exits_2(self):
        self.project.add_sbom()
        warnings = self.project.write("warn.json", json.dumps({"warnings": [{"rule": "image-labels", "severity": "low"}]}))
        code, out, _ = self.acc(
            "verify", IMAGE, "--json", "--mode", "warn",
            "--config", self.project.path("acc.yaml"),
            "--violations", warnings,
        )
        self.assertEqual(code, 2)
        self.assertEqual(json.loads(out)["status"], "warn")

    def test_human_output(self):
        self.project.add_sbom()
        code, out, _ = self.acc(
            "--no-emoji", "verify", IMAGE,
            "--config", self.project.path("acc.yaml"),
            "--violations", self.clean,
        )
        self.assertEqual(code, 0)
        self.assertIn("[OK] PASS", out)
        self.assertIn("SBOM: Present", out)

    def test_missing_profile(self):
        self.project.add_sbom()
        code, _, err = self.verify_clean("--profile", "nope")
        self.assertEqual(code, 1)
        self.assertIn("profile not found", err)


class TestExplainCommand(CliTestCase):
    """acc explain"""

    def test_without_state(self):
        code, _, err = self.acc("explain")
        self.assertEqual(code, 1)
        self.assertIn("no verification state", err)

    def test_json(self):
        self.verify_clean()
        code, out, _ = self.acc("explain", "--json")
        self.assertEqual(code, 0)
        snapshot = json.loads(out)
        self.assertEqual(snapshot["imageRef"], IMAGE)
        self.assertEqual(snapshot["status"], "fail")
        self.assertIn("input", snapshot["result"])

    def test_by_digest(self):
        self.verify_clean()
        code, out, _ = self.acc("explain", "--digest", DIGEST)
        self.assertEqual(code, 0)
        self.assertIn(IMAGE, out)
        self.assertIn("sbom-required", out)


class TestTrustCommands(CliTestCase):
    """acc attest, trust-verify, promote and keygen"""

    def setUp(self):
        super().setUp()
        self.project.add_sbom()

    def test_attest_then_trust_verify_and_promote(self):
        self.assertEqual(self.verify_clean()[0], 0)

        code, out, _ = self.acc("attest", IMAGE, "--json", "--config", self.project.path("acc.yaml"))
        self.assertEqual(code, 0)
        attest = json.loads(out)
        self.assertTrue(os.path.exists(attest["outputPath"]))

        code, out, _ = self.acc("trust-verify", IMAGE, "--json", "--config", self.project.path("acc.yaml"))
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["validCount"], 1)

        code, out, _ = self.acc(
            "promote", IMAGE, "--to", "prod", "--json",
            "--config", self.project.path("acc.yaml"),
            "--violations", self.clean,
        )
        self.assertEqual(code, 0)
        result = json.loads(out)
        self.assertEqual(result["status"], "success")
        self.assertEqual(result["targetRef"], "localhost:5000/app:prod")

    def test_promote_without_attestation(self):
        self.verify_clean()
        code, out, err = self.acc(
            "promote", IMAGE, "--to", "prod", "--json",
            "--config", self.project.path("acc.yaml"),
            "--violations", self.clean,
        )
        self.assertEqual(code, 1)
        self.assertIn("promotion blocked", err)
        self.assertEqual(json.loads(out)["violations"][0]["rule"], "attestation-required-for-promotion")

    def test_trust_verify_without_attestations(self):
        code, out, _ = self.acc("trust-verify", IMAGE, "--json")
        self.assertEqual(code, 1)
        self.assertFalse(json.loads(out)["met"])

    def test_attest_without_verify(self):
        code, _, err = self.acc("attest", IMAGE)
        self.assertEqual(code, 1)
        self.assertIn("acc verify", err)

    def test_keygen(self):
        code, out, _ = self.acc("keygen", "--json")
        self.assertEqual(code, 0)
        first = json.loads(out)
        self.assertTrue(first["created"])
        self.assertTrue(first["keyId"].startswith("ed25519:"))

        code, out, _ = self.acc("keygen", "--json")
        second = json.loads(out)
        self.assertFalse(second["created"])
        self.assertEqual(second["keyId"], first["keyId"])


class TestAttestRemote(CliTestCase):
    """acc attest --remote"""

    def setUp(self):
        super().setUp()
        self.project.add_sbom()
        self.verify_clean()
        publisher = mock.patch("acc.cli.RegistryAttestationPublisher")
        self.publisher = publisher.start().return_value
        self.addCleanup(publisher.stop)

    def test_publishes_signed_document(self):
        self.publisher.publish.return_value = "attestation-abababababab-2026"
        code, out, _ = self.acc("attest", IMAGE, "--remote", "--json")
        self.assertEqual(code, 0)
        data = json.loads(out)
        self.assertEqual(data["remoteTag"], "attestation-abababababab-2026")
        self.assertIsNone(data["remoteError"])
        self.publisher.publish.assert_called_once_with(IMAGE, data["attestation"])

    def test_publish_failure_keeps_local_attestation(self):
        self.publisher.publish.side_effect = RemotePublishError("registry unreachable")
        code, out, err = self.acc("attest", IMAGE, "--remote", "--json")
        self.assertEqual(code, 1)
        self.assertTrue(os.path.exists(json.loads(out)["outputPath"]))
        self.assertIn("publish failed: registry unreachable", err)

    def test_local_only_by_default(self):
        code, out, _ = self.acc("attest", IMAGE, "--json")
        self.assertEqual(code, 0)
        self.assertNotIn("remoteTag", json.loads(out))
        self.publisher.publish.assert_not_called()


class TestTrustStatusCommand(CliTestCase):
    """acc trust-status"""

    def test_unknown_exits_2(self):
        code, out, err = self.acc("trust-status", IMAGE, "--json")
        self.assertEqual(code, 2)
        self.assertEqual(json.loads(out)["status"], "unknown")
        self.assertIn("no verification state", err)

    def test_after_verify(self):
        self.project.add_sbom()
        self.verify_clean()
        code, out, _ = self.acc("--no-emoji", "trust-status", IMAGE)
        self.assertEqual(code, 0)
        self.assertIn("Trust Status", out)
        self.assertIn("[OK] PASS", out)

    def test_failed_exits_1(self):
        self.verify_clean()
        code, out, _ = self.acc("trust-status", IMAGE, "--json")
        self.assertEqual(code, 1)
        self.assertEqual(json.loads(out)["violations"][0]["rule"], "sbom-required")

    def test_remote_fetch_failure_is_a_warning(self):
        self.project.add_sbom()
        self.verify_clean()
        with mock.patch("acc.cli.RegistryAttestationFetcher") as fetcher:
            fetcher.return_value.fetch.side_effect = RemoteFetchError("registry unreachable")
            code, out, err = self.acc("trust-status", IMAGE, "--remote", "--json")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["status"], "pass")
        self.assertIn("remote fetch failed", err)
        fetcher.return_value.fetch.assert_called_once_with(IMAGE, DIGEST)


class TestPushAndRunCommands(CliTestCase):
    """acc push and acc run with a runtime command after '--'"""

    def setUp(self):
        super().setUp()
        self.project.add_sbom()
        subprocess_run = mock.patch("acc.cli.subprocess.run")
        self.subprocess_run = subprocess_run.start()
        self.addCleanup(subprocess_run.stop)
        self.subprocess_run.return_value = mock.Mock(returncode=0)

    def gated(self, command, *extra):
        return self.acc(
            command, IMAGE, "--json",
            "--config", self.project.path("acc.yaml"),
            "--violations", self.clean,
            *extra
        )

    def test_push_after_verify(self):
        self.verify_clean()
        code, out, _ = self.gated("push", "--", "docker", "push", "{image}")
        self.assertEqual(code, 0)
        self.assertTrue(json.loads(out)["pushed"])
        self.subprocess_run.assert_called_once_with(["docker", "push", IMAGE], check=False)

    def test_push_without_verify(self):
        code, _, err = self.gated("push", "--", "docker", "push", "{image}")
        self.assertEqual(code, 1)
        self.assertIn("no verification state", err)
        self.subprocess_run.assert_not_called()

    def test_push_command_failure(self):
        self.verify_clean()
        self.subprocess_run.return_value = mock.Mock(returncode=125)
        code, _, err = self.gated("push", "--", "docker", "push", "{image}")
        self.assertEqual(code, 1)
        self.assertIn("exited with status 125", err)

    def test_run_verifies_and_executes(self):
        code, out, _ = self.gated("run", "--", "docker", "run", "--rm", "{image}")
        self.assertEqual(code, 0)
        data = json.loads(out)
        self.assertTrue(data["executed"])
        self.assertEqual(data["verification"]["status"], "pass")
        self.subprocess_run.assert_called_once_with(["docker", "run", "--rm", IMAGE], check=False)

    def test_run_blocked(self):
        os.remove(self.project.path(".acc", "sbom", "app.spdx.json"))
        code, _, err = self.gated("run", "--", "docker", "run", "{image}")
        self.assertEqual(code, 1)
        self.assertIn("run blocked", err)
        self.subprocess_run.assert_not_called()

    def test_run_failure_does_not_change_decision(self):
        self.subprocess_run.return_value = mock.Mock(returncode=3)
        code, out, _ = self.gated("run", "--", "docker", "run", "{image}")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["warnings"], ["runtime exited with status 3"])

    def test_command_only_for_push_and_run(self):
        with self.assertRaises(SystemExit):
            self.acc("verify", IMAGE, "--", "docker", "run")


class TestMiscCommands(CliTestCase):

    def test_hash(self):
        path = self.project.write("doc.json", '{"b": 1, "a": 2}')
        code, out, _ = self.acc("hash", "-f", path)
        self.assertEqual(code, 0)
        other = self.project.write("doc2.json", '{"a":2,"b":1}')
        self.assertEqual(out, self.acc("hash", "--file", other)[1])
        self.assertEqual(out.strip(), "canonical_hash: " + canonical_hash({"a": 2, "b": 1}))

    def test_no_command(self):
        code, _, _ = self.acc()
        self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
