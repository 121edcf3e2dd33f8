#!/usr/bin/env python3
"""
acc Command Line Interface

Usage:
    acc verify <image> [--profile <name>] [--mode enforce|warn] [--promotion]
    acc promote <image> --to <env>
    acc explain [--digest <digest>] [--json]
    acc attest <image> [--remote]
    acc trust-verify <image> [--remote]
    acc trust-status <image> [--remote]
    acc push <image> [-- <command>]
    acc run <image> [-- <command>]
    acc keygen
    acc hash --file <file>

Exit codes: 0 pass, 1 fail, 2 warn. trust-status exits 2 for an image
that was never verified.

push and run execute the command after '--' once the gate allows the
image, with '{image}' in its arguments replaced by the image reference.
"""

import argparse
import json
import logging
import subprocess
import sys
from typing import Callable, List, Optional

from . import config as settings
from .attest import create_attestation
from .attestations import evaluate_attestations
from .config import GateConfig, default_config, load_gate_config
from .errors import AccError, RemoteFetchError, RemotePublishError, VerificationFailedError
from .evaluator import EXIT_CODES, DecisionStatus, TrustGateEvaluator
from .evidence import (
    DefaultRulesProducer,
    OpaViolationProducer,
    ProjectEvidenceSource,
    StaticViolationProducer,
    ViolationProducer,
)
from .hashing import canonical_hash
from .keys import ensure_signing_key
from .logging_config import configure_logging
from .models import VerificationMode
from .output import OutputStyle, format_decision, format_explanation, format_threshold, format_trust_status
from .profile import load_profile
from .promote import promote
from .remote import RegistryAttestationFetcher, RegistryAttestationPublisher
from .state import DecisionStateStore
from .status import trust_status
from .util import digest_from_ref
from .workload import push, run_workload

logger = logging.getLogger(__name__)

EXIT_FAIL = EXIT_CODES[DecisionStatus.FAIL]


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def print_json(data) -> None:
    print(json.dumps(data, indent=2))


def _style(args) -> OutputStyle:
    return OutputStyle.from_settings(args.color, emoji=not args.no_emoji)


def _gate_config(args) -> GateConfig:
    if args.config:
        return load_gate_config(args.config)
    return default_config()


def _producer(args) -> ViolationProducer:
    if getattr(args, "violations", None):
        return StaticViolationProducer.from_document(load_json(args.violations))
    opa_url = getattr(args, "opa_url", None) or settings.OPA_URL
    if opa_url:
        return OpaViolationProducer(opa_url)
    return DefaultRulesProducer()


def _evidence_source(args, gate_config: GateConfig) -> ProjectEvidenceSource:
    digest = getattr(args, "digest", None)
    image_config = load_json(args.image_config) if getattr(args, "image_config", None) else None

    fetcher = None
    if gate_config.attestation_requirements().uses_remote() or getattr(args, "remote", False):
        fetcher = RegistryAttestationFetcher(project_root=args.project_root)

    return ProjectEvidenceSource(
        project_root=args.project_root,
        gate_config=gate_config,
        producer=_producer(args),
        digest_resolver=lambda ref: digest or digest_from_ref(ref),
        image_config_provider=(lambda ref: image_config) if image_config is not None else None,
        remote_fetcher=fetcher,
    )


def _command_runner(args) -> Optional[Callable[[str], int]]:
    """Runner for the command after '--', or None when there is none."""
    argv = list(args.exec_command)
    if not argv:
        return None

    def execute(image_ref: str) -> int:
        cmd = [a.replace("{image}", image_ref) for a in argv]
        logger.info("Executing: %s", " ".join(cmd))
        return subprocess.run(cmd, check=False).returncode
    return execute


def _report_decision(decision_dict, args) -> None:
    if args.json:
        print_json(decision_dict)
    else:
        print(format_decision(decision_dict, _style(args)))


def cmd_verify(args) -> int:
    """Verify an image and print the decision."""
    gate_config = _gate_config(args)
    profile = load_profile(args.profile, args.project_root) if args.profile else None
    evaluator = TrustGateEvaluator(gate_config, project_root=args.project_root)
    source = _evidence_source(args, gate_config)

    try:
        decision = evaluator.verify(
            source,
            args.image,
            for_promotion=args.promotion,
            mode=VerificationMode(args.mode) if args.mode else None,
            profile=profile,
        )
    except VerificationFailedError as e:
        _report_decision(e.decision.to_dict(), args)
        print(_style(args).error(str(e)), file=sys.stderr)
        return EXIT_FAIL

    _report_decision(decision.to_dict(), args)
    return decision.exit_code()


def cmd_promote(args) -> int:
    """Promote an image to an environment after a promotion verification."""
    gate_config = _gate_config(args)
    profile = load_profile(args.profile, args.project_root) if args.profile else None
    evaluator = TrustGateEvaluator(gate_config, project_root=args.project_root)
    source = _evidence_source(args, gate_config)

    try:
        result = promote(evaluator, source, args.image, args.to, profile=profile)
    except VerificationFailedError as e:
        _report_decision(e.decision.to_dict(), args)
        print(_style(args).error(f"promotion blocked: {e}"), file=sys.stderr)
        return EXIT_FAIL

    if args.json:
        print_json(result.to_dict())
    else:
        style = _style(args)
        print(format_decision(result.decision.to_dict(), style))
        if result.decision.allow:
            print(style.success(f"Promotion to {result.environment} allowed: {result.target_ref}"))
        else:
            print(style.error(f"Promotion to {result.environment} denied"))
    return result.decision.exit_code()


def cmd_explain(args) -> int:
    """Explain the last (or a digest's) verification decision."""
    snapshot = DecisionStateStore(args.project_root).explain(args.digest)
    if args.json:
        print_json(snapshot)
    else:
        print(format_explanation(snapshot, _style(args)))
    return 0


def cmd_attest(args) -> int:
    """Create a signed attestation for the last verification."""
    gate_config = _gate_config(args)
    source = _evidence_source(args, gate_config)
    result = create_attestation(
        args.image,
        project_root=args.project_root,
        image_digest=args.digest,
        policy_mode=gate_config.policy.mode.value,
        sbom_ref=source.sbom_ref,
        git_commit=args.git_commit,
    )

    tag, publish_error = None, None
    if args.remote:
        try:
            tag = RegistryAttestationPublisher(project_root=args.project_root).publish(args.image, result.document)
        except RemotePublishError as e:
            publish_error = str(e)

    if args.json:
        data = result.to_dict()
        if args.remote:
            data["remoteTag"] = tag
            data["remoteError"] = publish_error
        print_json(data)
    else:
        style = _style(args)
        if result.key_created:
            print(style.info(f"Generated signing key {result.document['envelope']['keyId']}"))
        print(style.success("Attestation created"))
        print(f"  Path:    {result.output_path}")
        print(f"  Subject: {args.image}")
        print(f"  Key:     {result.document['envelope']['keyId']}")
        if tag:
            print(style.success(f"Published to registry as {tag}"))
    if publish_error:
        print(_style(args).error(f"publish failed: {publish_error}"), file=sys.stderr)
        return EXIT_FAIL
    return 0


def cmd_trust_verify(args) -> int:
    """Check the attestations available for an image."""
    gate_config = _gate_config(args)
    requirements = gate_config.attestation_requirements().model_copy(update={
        "enabled": True,
        "require_results_hash_match": False,
    })
    if args.remote and not requirements.uses_remote():
        requirements = requirements.model_copy(update={"sources": requirements.sources + ["remote"]})

    source = _evidence_source(args, gate_config)
    digest = source.artifact_digest(args.image)
    attestations, fetch_errors = source.attestations(args.image, digest, requirements)
    result = evaluate_attestations(requirements, attestations, digest, None)

    if args.json:
        data = result.to_dict()
        data["imageRef"] = args.image
        data["imageDigest"] = digest or ""
        data["errors"] = fetch_errors
        print_json(data)
    else:
        style = _style(args)
        print(style.trust(f"Attestations for {args.image}"))
        for detail in result.details:
            line = f"{detail.location} ({detail.source})"
            if detail.valid:
                print(style.success(line))
            else:
                print(style.error(f"{line}: {'; '.join(detail.reasons)}"))
        for error in fetch_errors:
            print(style.warning(error))
        print(format_threshold(result.to_dict(), style))
    return 0 if result.met else EXIT_FAIL


def cmd_trust_status(args) -> int:
    """Summarize what is known about an image without re-verifying it."""
    digest = args.digest or digest_from_ref(args.image)
    if args.remote:
        try:
            RegistryAttestationFetcher(project_root=args.project_root).fetch(args.image, digest)
        except RemoteFetchError as e:
            print(_style(args).warning(f"remote fetch failed: {e}"), file=sys.stderr)

    status = trust_status(args.project_root, args.image, digest)
    if not status.known:
        print(_style(args).warning(f"no verification state for {args.image}"), file=sys.stderr)
    if args.json:
        print_json(status.to_dict())
    else:
        print(format_trust_status(status.to_dict(), _style(args)))
    return status.exit_code()


def cmd_push(args) -> int:
    """Push an image that passed its last verification."""
    gate_config = _gate_config(args)
    evaluator = TrustGateEvaluator(gate_config, project_root=args.project_root)
    source = _evidence_source(args, gate_config)
    runner = _command_runner(args)

    def pusher(image_ref: str) -> None:
        code = runner(image_ref)
        if code:
            raise AccError(f"push command exited with status {code}")

    result = push(evaluator, source, args.image, pusher=pusher if runner else None)
    if args.json:
        print_json(result.to_dict())
    else:
        style = _style(args)
        print(f"Verification: {style.status(result.verification_status)}")
        if result.pushed:
            print(style.success(f"Pushed {result.image_ref}"))
        else:
            print(style.success(f"Push allowed for {result.image_ref}"))
        if result.attestation_ref:
            print(f"  Attestation: {result.attestation_ref}")
    return 0


def cmd_run(args) -> int:
    """Verify an image and run it if the gate allows."""
    gate_config = _gate_config(args)
    profile = load_profile(args.profile, args.project_root) if args.profile else None
    evaluator = TrustGateEvaluator(gate_config, project_root=args.project_root)
    source = _evidence_source(args, gate_config)

    try:
        result = run_workload(evaluator, source, args.image, runner=_command_runner(args), profile=profile)
    except VerificationFailedError as e:
        _report_decision(e.decision.to_dict(), args)
        print(_style(args).error(f"run blocked: {e}"), file=sys.stderr)
        return EXIT_FAIL

    if args.json:
        print_json(result.to_dict())
    else:
        style = _style(args)
        print(format_decision(result.decision.to_dict(), style))
        for warning in result.warnings:
            print(style.warning(warning))
    return 0 if result.decision.allow else EXIT_FAIL


def cmd_keygen(args) -> int:
    """Ensure a project signing key exists and print its key ID."""
    key, created = ensure_signing_key(args.project_root)
    if args.json:
        print_json({"keyId": key.key_id, "publicKey": key.public_key_b64, "created": created, "source": key.source})
    else:
        style = _style(args)
        if created:
            print(style.success(f"Generated signing key at {key.source}"))
        else:
            print(style.info(f"Using existing signing key from {key.source}"))
        print(f"Key ID: {key.key_id}")
    return 0


def cmd_hash(args) -> int:
    """Print the canonical hash of a JSON document."""
    data = load_json(args.file)
    print(f"canonical_hash: {canonical_hash(data)}")
    return 0


def _add_evidence_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Path to acc.yaml")
    p.add_argument("--profile", help="Profile name or path")
    p.add_argument("--digest", help="Image digest (sha256:...)")
    p.add_argument("--violations", help="JSON file with precomputed rule engine output")
    p.add_argument("--opa-url", help="OPA decision URL for rule evaluation")
    p.add_argument("--image-config", help="JSON file with the image config (User, Labels)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acc",
        description="acc trust verification gate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  acc verify registry.local/app@sha256:abc... --profile baseline
  acc attest registry.local/app@sha256:abc...
  acc promote registry.local/app@sha256:abc... --to prod
  acc run registry.local/app@sha256:abc... -- docker run --rm {image}
  acc explain --json
        """
    )
    parser.add_argument("--project-root", default=settings.PROJECT_ROOT, help="Directory containing .acc/")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Log level")
    parser.add_argument("--log-json", action="store_true", default=settings.LOG_JSON, help="JSON log lines")
    parser.add_argument("--color", choices=["auto", "always", "never"], default=settings.COLOR)
    parser.add_argument("--no-emoji", action="store_true", default=not settings.EMOJI)
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="Machine-readable output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    verify_parser = subparsers.add_parser("verify", parents=[common], help="Verify an image")
    verify_parser.add_argument("image")
    verify_parser.add_argument("--mode", choices=[m.value for m in VerificationMode])
    verify_parser.add_argument("--promotion", action="store_true", help="Apply promotion requirements")
    _add_evidence_args(verify_parser)

    promote_parser = subparsers.add_parser("promote", parents=[common], help="Promote an image to an environment")
    promote_parser.add_argument("image")
    promote_parser.add_argument("--to", required=True, help="Target environment")
    _add_evidence_args(promote_parser)

    explain_parser = subparsers.add_parser("explain", parents=[common], help="Explain the last decision")
    explain_parser.add_argument("--digest", help="Explain the decision for this digest")

    attest_parser = subparsers.add_parser("attest", parents=[common], help="Attest the last verification")
    attest_parser.add_argument("image")
    attest_parser.add_argument("--config", help="Path to acc.yaml")
    attest_parser.add_argument("--digest", help="Image digest (sha256:...)")
    attest_parser.add_argument("--git-commit", help="Commit recorded in the attestation")
    attest_parser.add_argument("--remote", action="store_true", help="Also publish the attestation to the registry")

    trust_parser = subparsers.add_parser("trust-verify", parents=[common], help="Check attestations for an image")
    trust_parser.add_argument("image")
    trust_parser.add_argument("--config", help="Path to acc.yaml")
    trust_parser.add_argument("--digest", help="Image digest (sha256:...)")
    trust_parser.add_argument("--remote", action="store_true", help="Include registry attestations")

    status_parser = subparsers.add_parser("trust-status", parents=[common], help="Show the trust status of an image")
    status_parser.add_argument("image")
    status_parser.add_argument("--digest", help="Image digest (sha256:...)")
    status_parser.add_argument("--remote", action="store_true", help="Fetch registry attestations first")

    push_parser = subparsers.add_parser("push", parents=[common], help="Push a verified image")
    push_parser.add_argument("image")
    _add_evidence_args(push_parser)

    run_parser = subparsers.add_parser("run", parents=[common], help="Verify and run an image")
    run_parser.add_argument("image")
    _add_evidence_args(run_parser)

    subparsers.add_parser("keygen", parents=[common], help="Create the project signing key if missing")

    hash_parser = subparsers.add_parser("hash", parents=[common], help="Canonical hash of a JSON file")
    hash_parser.add_argument("-f", "--file", required=True, help="JSON file to hash")

    return parser


COMMANDS = {
    "verify": cmd_verify,
    "promote": cmd_promote,
    "explain": cmd_explain,
    "attest": cmd_attest,
    "trust-verify": cmd_trust_verify,
    "trust-status": cmd_trust_status,
    "push": cmd_push,
    "run": cmd_run,
    "keygen": cmd_keygen,
    "hash": cmd_hash,
}


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run a command and return its exit code."""
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    exec_command: List[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, exec_command = argv[:split], argv[split + 1:]
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_FAIL
    if exec_command and args.command not in ("push", "run"):
        parser.error(f"'{args.command}' does not take a command after '--'")
    args.exec_command = exec_command

    level = "DEBUG" if settings.is_debug() else args.log_level
    configure_logging(level, json_format=args.log_json, log_file=settings.LOG_FILE or None)

    try:
        return COMMANDS[args.command](args)
    except AccError as e:
        print(_style(args).error(str(e)), file=sys.stderr)
        return EXIT_FAIL
    except (OSError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(_style(args).error(str(e)), file=sys.stderr)
        return EXIT_FAIL


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
