"""
acc Evidence and Configuration Tests

Tests the rule engine producers, the project evidence source and the
acc.yaml configuration loader.
"""

import os
import unittest
from unittest import mock

import requests

from acc.config import GateConfig, load_gate_config, parse_gate_config
from acc.errors import ConfigError, PolicyEvaluationError, RemoteFetchError
from acc.evaluator import TrustGateEvaluator
from acc.evidence import (
    DefaultRulesProducer,
    OpaViolationProducer,
    ProjectEvidenceSource,
    StaticViolationProducer,
    parse_engine_result,
)
from acc.models import VerificationMode
from acc.state import DecisionStateStore
from acc.waivers import WAIVERS_RELPATH

from helpers import DIGEST, IMAGE, TempProject


class TestDefaultRules(unittest.TestCase):
    """Built-in rules."""

    def setUp(self):
        self.producer = DefaultRulesProducer()

    def test_root_user(self):
        for user in ("", "root", "0"):
            rules = [v.rule for v in self.producer.produce({"config": {"User": user, "Labels": {"a": "b"}}})]
            self.assertEqual(rules, ["no-root-user"], user)

    def test_non_root_user_with_labels(self):
        self.assertEqual(self.producer.produce({"config": {"User": "1000", "Labels": {"a": "b"}}}), [])

    def test_missing_labels_is_a_warning(self):
        found = self.producer.produce({"config": {"User": "app"}})
        self.assertEqual([(v.rule, v.result) for v in found], [("image-labels", "warn")])


class TestParseEngineResult(unittest.TestCase):
    """Normalizing rule engine output."""

    def test_list(self):
        found = parse_engine_result([{"rule": "r", "severity": "low", "message": "m"}])
        self.assertEqual(found[0].rule, "r")
        self.assertEqual(found[0].result, "fail")

    def test_defaults(self):
        found = parse_engine_result([{}])
        self.assertEqual((found[0].rule, found[0].severity, found[0].result), ("policy-violation", "high", "fail"))

    def test_violations_and_warnings(self):
        found = parse_engine_result({
            "violations": [{"rule": "a"}],
            "warnings": [{"rule": "b"}, "plain text"],
        })
        self.assertEqual([(v.rule, v.result) for v in found], [
            ("a", "fail"), ("b", "warn"), ("policy-violation", "warn"),
        ])
        self.assertEqual(found[2].message, "plain text")

    def test_deny_alias(self):
        self.assertEqual(parse_engine_result({"deny": ["no"]})[0].message, "no")

    def test_none(self):
        self.assertEqual(parse_engine_result(None), [])

    def test_unexpected_type(self):
        with self.assertRaises(PolicyEvaluationError):
            parse_engine_result("allow")

    def test_static_producer(self):
        producer = StaticViolationProducer.from_document({"violations": [{"rule": "x"}]})
        self.assertEqual([v.rule for v in producer.produce({})], ["x"])


class TestOpaProducer(unittest.TestCase):
    """OPA data API producer."""

    def _session(self, body=None, exc=None):
        session = mock.Mock()
        if exc is not None:
            session.post.side_effect = exc
        else:
            response = mock.Mock()
            response.raise_for_status.return_value = None
            response.json.return_value = body
            session.post.return_value = response
        return session

    def test_posts_input_and_parses_result(self):
        session = self._session({"result": {"violations": [{"rule": "no-root-user"}]}})
        producer = OpaViolationProducer("http://opa:8181/v1/data/acc", timeout=2, session=session)

        found = producer.produce({"config": {}})
        self.assertEqual([v.rule for v in found], ["no-root-user"])
        session.post.assert_called_once_with(
            "http://opa:8181/v1/data/acc", json={"input": {"config": {}}}, timeout=2
        )

    def test_undefined_result(self):
        self.assertEqual(OpaViolationProducer("http://opa", session=self._session({})).produce({}), [])

    def test_unreachable(self):
        session = self._session(exc=requests.ConnectionError("refused"))
        with self.assertRaises(PolicyEvaluationError):
            OpaViolationProducer("http://opa", session=session).produce({})

    def test_non_object_reply(self):
        """Valid JSON that is not an object is an evaluation failure."""
        session = self._session(["not", "an", "object"])
        with self.assertRaises(PolicyEvaluationError):
            OpaViolationProducer("http://opa", session=session).produce({})

    def test_non_list_result_field(self):
        session = self._session({"result": {"violations": "no-root-user"}})
        with self.assertRaises(PolicyEvaluationError):
            OpaViolationProducer("http://opa", session=session).produce({})

    def test_malformed_reply_fails_closed_and_persists(self):
        project = TempProject(name="app")
        self.addCleanup(project.cleanup)
        project.add_sbom()
        config = parse_gate_config({"project": {"name": "app"}, "policy": {"mode": "warn"}})
        producer = OpaViolationProducer("http://opa", session=self._session([1, 2]))
        source = ProjectEvidenceSource(project.root, config, producer=producer)

        decision = TrustGateEvaluator(config, project_root=project.root).verify(source, IMAGE)
        self.assertEqual(decision.status.value, "fail")
        self.assertEqual([v.rule for v in decision.violations], ["policy-evaluation-error"])
        self.assertEqual(DecisionStateStore(project.root).load_last()["status"], "fail")


class TestProjectEvidenceSource(unittest.TestCase):
    """Evidence read from a project directory."""

    def setUp(self):
        self.project = TempProject(name="app")
        self.config = parse_gate_config({"project": {"name": "app"}})

    def tearDown(self):
        self.project.cleanup()

    def test_sbom_presence(self):
        source = ProjectEvidenceSource(self.project.root, self.config)
        self.assertFalse(source.sbom_present(IMAGE))
        self.assertIsNone(source.sbom_ref)
        self.project.add_sbom()
        self.assertTrue(source.sbom_present(IMAGE))
        self.assertTrue(source.sbom_ref.endswith("app.spdx.json"))

    def test_cyclonedx_format(self):
        config = parse_gate_config({"project": {"name": "app"}, "sbom": {"format": "cyclonedx"}})
        self.project.add_sbom("cyclonedx")
        self.assertTrue(ProjectEvidenceSource(self.project.root, config).sbom_present(IMAGE))

    def test_digest_from_reference(self):
        source = ProjectEvidenceSource(self.project.root, self.config)
        self.assertEqual(source.artifact_digest(IMAGE), DIGEST)
        self.assertIsNone(source.artifact_digest("app:latest"))

    def test_policy_input(self):
        source = ProjectEvidenceSource(
            self.project.root, self.config,
            image_config_provider=lambda ref: {"User": "1000"},
        )
        doc = source.policy_input(IMAGE, DIGEST, True)
        self.assertEqual(doc["artifact"], {"ref": IMAGE, "digest": DIGEST})
        self.assertEqual(doc["config"], {"User": "1000"})
        self.assertFalse(doc["sbom"]["present"])
        self.assertFalse(doc["attestation"]["present"])
        self.assertTrue(doc["promotion"])

    def test_waivers_from_project(self):
        self.project.write(WAIVERS_RELPATH, "waivers:\n  - ruleId: a\n    expiry: \"\"\n")
        waivers = ProjectEvidenceSource(self.project.root, self.config).waivers()
        self.assertEqual([w.rule_id for w in waivers], ["a"])

    def test_remote_errors_are_collected(self):
        fetcher = mock.Mock()
        fetcher.fetch.side_effect = RemoteFetchError("registry.local unreachable")
        source = ProjectEvidenceSource(self.project.root, self.config, remote_fetcher=fetcher)
        requirements = self.config.attestation_requirements().model_copy(update={"sources": ["local", "remote"]})

        found, errors = source.attestations(IMAGE, DIGEST, requirements)
        self.assertEqual(found, [])
        self.assertEqual(errors, ["registry.local unreachable"])

    def test_remote_without_fetcher(self):
        source = ProjectEvidenceSource(self.project.root, self.config)
        requirements = self.config.attestation_requirements().model_copy(update={"sources": ["remote"]})
        found, errors = source.attestations(IMAGE, DIGEST, requirements)
        self.assertEqual(found, [])
        self.assertEqual(len(errors), 1)


class TestGateConfig(unittest.TestCase):
    """acc.yaml loading."""

    def setUp(self):
        self.project = TempProject()

    def tearDown(self):
        self.project.cleanup()

    def test_defaults(self):
        config = GateConfig()
        self.assertEqual(config.policy.mode, VerificationMode.ENFORCE)
        self.assertFalse(config.policy.require_attestation)
        requirements = config.attestation_requirements()
        self.assertTrue(requirements.enabled)
        self.assertEqual(requirements.min_count, 1)
        self.assertEqual(requirements.sources, ["local"])
        self.assertTrue(requirements.require_signature)

    def test_load_yaml(self):
        path = self.project.write("acc.yaml", (
            "project:\n"
            "  name: demo\n"
            "policy:\n"
            "  mode: warn\n"
            "trust:\n"
            "  requireAttestations:\n"
            "    minCount: 2\n"
            "    sources: [local, remote]\n"
            "    requireResultsHashMatch: false\n"
            "environments:\n"
            "  prod:\n"
            "    policy:\n"
            "      mode: enforce\n"
            "    registry:\n"
            "      default: registry.prod.local\n"
        ))
        config = load_gate_config(path)
        self.assertEqual(config.project.name, "demo")
        self.assertEqual(config.policy.mode, VerificationMode.WARN)
        requirements = config.attestation_requirements()
        self.assertEqual(requirements.min_count, 2)
        self.assertTrue(requirements.uses_remote())
        self.assertFalse(requirements.require_results_hash_match)
        self.assertEqual(config.policy_for_env("prod").mode, VerificationMode.ENFORCE)
        self.assertEqual(config.policy_for_env("dev").mode, VerificationMode.WARN)
        self.assertEqual(config.registry_for_env("prod").default, "registry.prod.local")
        self.assertEqual(config.registry_for_env("dev").default, "localhost:5000")

    def test_negative_min_count(self):
        with self.assertRaises(ConfigError):
            parse_gate_config({"trust": {"requireAttestations": {"minCount": -1}}})

    def test_unknown_source(self):
        with self.assertRaises(ConfigError):
            parse_gate_config({"trust": {"requireAttestations": {"sources": ["ftp"]}}})

    def test_bad_sbom_format(self):
        with self.assertRaises(ConfigError):
            parse_gate_config({"sbom": {"format": "xml"}})

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_gate_config(os.path.join(self.project.root, "missing.yaml"))

    def test_empty_file(self):
        path = self.project.write("acc.yaml", "")
        self.assertEqual(load_gate_config(path).policy.mode, VerificationMode.ENFORCE)


if __name__ == "__main__":
    unittest.main()
