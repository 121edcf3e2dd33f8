"""
acc Profile and Resolver Tests

Tests strict profile parsing and how profiles partition raw violations
into blocking violations and warnings.
"""

import os
import unittest

import yaml

from acc.errors import ProfileSchemaError
from acc.models import Violation
from acc.profile import load_profile, parse_profile, resolve_profile_path
from acc.resolver import resolve_violations

from helpers import TempProject

BASELINE = """\
schemaVersion: 1
name: baseline
description: Baseline production profile
policies:
  allow: [no-root-user, sbom-required]
violations:
  ignore: [informational, image-labels]
warnings:
  show: true
"""


def _profile(**overrides):
    data = {"schemaVersion": 1, "name": "p", "description": "test profile"}
    data.update(overrides)
    return parse_profile(data)


class TestProfileParsing(unittest.TestCase):
    """Strict schema validation."""

    def setUp(self):
        self.project = TempProject()

    def tearDown(self):
        self.project.cleanup()

    def test_load_by_name(self):
        self.project.write(os.path.join(".acc", "profiles", "baseline.yaml"), BASELINE)
        profile = load_profile("baseline", self.project.root)
        self.assertEqual(profile.name, "baseline")
        self.assertEqual(profile.allow, ["no-root-user", "sbom-required"])
        self.assertEqual(profile.ignore, ["informational", "image-labels"])
        self.assertTrue(profile.warnings_show)

    def test_load_by_path(self):
        path = self.project.write("custom/strict.yml", BASELINE)
        self.assertEqual(load_profile(path).name, "baseline")

    def test_resolve_profile_path(self):
        self.assertEqual(
            resolve_profile_path("baseline", "/proj"),
            os.path.join("/proj", ".acc", "profiles", "baseline.yaml"),
        )
        self.assertEqual(resolve_profile_path("./x.yaml", "/proj"), "./x.yaml")

    def test_missing_profile(self):
        with self.assertRaises(ProfileSchemaError) as cm:
            load_profile("nope", self.project.root)
        self.assertIn("profile not found", str(cm.exception))

    def test_unknown_top_level_field(self):
        with self.assertRaises(ProfileSchemaError) as cm:
            _profile(extra=True)
        self.assertIn("unknown field 'extra'", str(cm.exception))

    def test_unknown_nested_field(self):
        with self.assertRaises(ProfileSchemaError) as cm:
            _profile(policies={"allow": [], "deny": ["x"]})
        self.assertIn("policies.deny", str(cm.exception))

    def test_unsupported_schema_version(self):
        with self.assertRaises(ProfileSchemaError) as cm:
            _profile(schemaVersion=2)
        self.assertIn("unsupported schemaVersion", str(cm.exception))

    def test_schema_version_must_be_an_integer(self):
        for value in ("1", 1.0, True):
            with self.subTest(value=value):
                with self.assertRaises(ProfileSchemaError):
                    _profile(schemaVersion=value)

    def test_missing_schema_version(self):
        with self.assertRaises(ProfileSchemaError):
            parse_profile({"name": "p", "description": "d"})

    def test_name_and_description_required(self):
        with self.assertRaises(ProfileSchemaError):
            _profile(name="")
        with self.assertRaises(ProfileSchemaError):
            _profile(description="")

    def test_empty_allow_entry(self):
        with self.assertRaises(ProfileSchemaError) as cm:
            _profile(policies={"allow": ["ok", "  "]})
        self.assertIn("policies.allow[1]", str(cm.exception))

    def test_not_a_mapping(self):
        with self.assertRaises(ProfileSchemaError):
            parse_profile(["a", "b"])

    def test_error_names_file(self):
        path = self.project.write("bad.yaml", "schemaVersion: 1\nname: x\ndescription: y\nbogus: 1\n")
        with self.assertRaises(ProfileSchemaError) as cm:
            load_profile(path)
        self.assertEqual(cm.exception.path, path)
        self.assertIn(path, str(cm.exception))


class TestResolver(unittest.TestCase):
    """Profile resolution of raw violations."""

    def setUp(self):
        self.violations = [
            Violation(rule="no-root-user", severity="high"),
            Violation(rule="image-labels", severity="low"),
            Violation(rule="latest-tag", severity="informational"),
            Violation(rule="sbom-required", severity="critical"),
        ]

    def test_no_profile_everything_blocks(self):
        resolution = resolve_violations(None, self.violations)
        self.assertEqual(len(resolution.violations), 4)
        self.assertEqual(resolution.warnings, [])
        self.assertFalse(resolution.allow)

    def test_allow_set_drops_other_rules(self):
        profile = _profile(policies={"allow": ["no-root-user"]})
        resolution = resolve_violations(profile, self.violations)
        self.assertEqual([v.rule for v in resolution.violations], ["no-root-user"])
        self.assertEqual(resolution.warnings, [])

    def test_allow_set_is_case_sensitive(self):
        profile = _profile(policies={"allow": ["No-Root-User"]})
        resolution = resolve_violations(profile, self.violations)
        self.assertEqual(resolution.violations, [])
        self.assertTrue(resolution.allow)

    def test_ignore_by_rule_and_severity(self):
        profile = _profile(violations={"ignore": ["image-labels", "INFORMATIONAL"]})
        resolution = resolve_violations(profile, self.violations)
        self.assertEqual(
            sorted(v.rule for v in resolution.violations),
            ["no-root-user", "sbom-required"],
        )
        self.assertEqual(resolution.warnings, [])

    def test_ignored_kept_as_warnings_when_shown(self):
        profile = _profile(violations={"ignore": ["low"]}, warnings={"show": True})
        resolution = resolve_violations(profile, self.violations)
        self.assertEqual([v.rule for v in resolution.warnings], ["image-labels"])
        self.assertNotIn("image-labels", [v.rule for v in resolution.violations])

    def test_baseline_profile(self):
        profile = parse_profile(yaml.safe_load(BASELINE))
        resolution = resolve_violations(profile, self.violations)
        self.assertEqual(
            sorted(v.rule for v in resolution.violations),
            ["no-root-user", "sbom-required"],
        )
        self.assertFalse(resolution.allow)

    def test_empty_input(self):
        resolution = resolve_violations(_profile(), [])
        self.assertTrue(resolution.allow)


if __name__ == "__main__":
    unittest.main()
