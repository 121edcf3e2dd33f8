"""
acc Output and Logging Tests
"""

import io
import json
import logging
import unittest
from unittest import mock

from acc.logging_config import AuditLogger, StructuredFormatter, set_verification_id
from acc.output import OutputStyle, format_decision, format_explanation


class TestOutputStyle(unittest.TestCase):
    """Explicit color and emoji configuration."""

    def test_plain(self):
        style = OutputStyle(color=False, emoji=False)
        self.assertEqual(style.success("ok"), "[OK] ok")
        self.assertEqual(style.status("fail"), "[FAIL] FAIL")

    def test_color(self):
        style = OutputStyle(color=True, emoji=False)
        self.assertTrue(style.error("x").startswith("\033[31m"))
        self.assertTrue(style.error("x").endswith("\033[0m"))

    def test_auto_is_off_for_non_tty(self):
        self.assertFalse(OutputStyle.from_settings("auto", stream=io.StringIO()).color)

    def test_auto_respects_no_color(self):
        stream = mock.Mock()
        stream.isatty.return_value = True
        with mock.patch.dict("os.environ", {"NO_COLOR": "1"}):
            self.assertFalse(OutputStyle.from_settings("auto", stream=stream).color)

    def test_always(self):
        self.assertTrue(OutputStyle.from_settings("always", stream=io.StringIO()).color)


class TestFormatting(unittest.TestCase):

    def setUp(self):
        self.style = OutputStyle(color=False, emoji=False)

    def test_decision_lists_findings(self):
        text = format_decision({
            "status": "fail",
            "sbomPresent": False,
            "violations": [{"rule": "sbom-required", "severity": "critical", "message": "SBOM missing"}],
            "warnings": [],
            "waived": [{"rule": "no-root-user"}],
        }, self.style)
        self.assertIn("[FAIL] FAIL", text)
        self.assertIn("[FAIL] SBOM: Missing", text)
        self.assertIn("1. [critical] sbom-required", text)
        self.assertIn("Waived: no-root-user", text)

    def test_explanation_without_results(self):
        text = format_explanation({"imageRef": "app:1", "status": "pass", "result": {}}, self.style)
        self.assertIn("No detailed results available", text)

    def test_explanation_with_input(self):
        text = format_explanation({
            "imageRef": "app:1",
            "status": "pass",
            "profileUsed": "baseline",
            "result": {"status": "pass", "sbomPresent": True, "input": {"promotion": False}, "policyResult": {"allow": True}},
        }, self.style)
        self.assertIn("Profile:    baseline", text)
        self.assertIn("Policy: Allowed", text)
        self.assertIn("promotion: False", text)


class TestStructuredLogging(unittest.TestCase):
    """JSON log lines and audit events."""

    def setUp(self):
        self.stream = io.StringIO()
        handler = logging.StreamHandler(self.stream)
        handler.setFormatter(StructuredFormatter())
        self.logger = logging.getLogger("acc.audit.test")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.logger.addHandler(handler)
        self.addCleanup(self.logger.removeHandler, handler)

    def test_audit_event_fields(self):
        set_verification_id("v-123")
        AuditLogger("acc.audit.test").gate_result("policy", False, ["no-root-user"])

        line = json.loads(self.stream.getvalue().strip())
        self.assertEqual(line["level"], "WARNING")
        self.assertEqual(line["verification_id"], "v-123")
        self.assertEqual(line["event_type"], "GATE_RESULT")
        self.assertEqual(line["blocking_rules"], ["no-root-user"])

    def test_disabled_level_is_skipped(self):
        self.logger.setLevel(logging.ERROR)
        AuditLogger("acc.audit.test").verification_started("app:1", "enforce", False)
        self.assertEqual(self.stream.getvalue(), "")


if __name__ == "__main__":
    unittest.main()
