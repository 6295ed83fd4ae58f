from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from provenance import __version__
from provenance.compare import compare, first_difference
from provenance.errors import ProvenanceError, StageFailures
from provenance.eth.metrics import Metrics
from provenance.eth.settings import Settings
from provenance.models import RawBytecode, VerificationReport, VerificationResult
from provenance.normalize import DEFAULT_MARKERS, KNOWN_MARKERS, normalize, parse_marker
from provenance.pipeline import sources_for, verify

# Exit status per classification. 2 stays with argparse usage errors.
EXIT_CODES = {
    VerificationResult.MATCH: 0,
    VerificationResult.MISMATCH: 1,
    VerificationResult.NOT_FOUND: 3,
    VerificationResult.AMBIGUOUS: 4,
}
EXIT_INFRA = 5

logger = logging.getLogger("provenance.cli")


def read_bytecode(value: str, source: str) -> RawBytecode:
    """Accept either a hex literal or `@path` to a file holding one."""
    if value.startswith("@"):
        try:
            value = Path(value[1:]).read_text(encoding="utf-8")
        except OSError as e:
            raise ProvenanceError(f"cannot read {value[1:]}: {e}", stage="input") from e
    return RawBytecode.parse(value, source=source)


def markers_from(args) -> tuple:
    if not args.metadata_marker:
        return ()
    return tuple(parse_marker(m) for m in args.metadata_marker)


def print_failure(err: ProvenanceError) -> None:
    if isinstance(err, StageFailures):
        print("❌ Verification aborted, multiple stages failed:", file=sys.stderr)
        for f in err.failures:
            print(f"   - {f.stage}: {f}", file=sys.stderr)
        return
    print(f"❌ {err.stage}: {err}", file=sys.stderr)


def print_report(report: VerificationReport, verbose: bool) -> None:
    r = report.result
    if r is VerificationResult.MATCH:
        print("✅ Matching contract deployment!")
    elif r is VerificationResult.MISMATCH:
        print("❌ Did not match")
    elif r is VerificationResult.NOT_FOUND:
        print("❌ Contract creation not found in transaction")
    else:
        print(f"❌ Ambiguous: {report.candidates} creations of the contract in this transaction")

    print(f"   Contract:    {report.contract_name} @ {report.contract_address}")
    print(f"   Transaction: {report.transaction}")
    if report.detail:
        print(f"   Detail:      {report.detail}")
    if report.on_chain_codehash:
        print(f"   On-chain codehash: {report.on_chain_codehash}")
        print(f"   Built codehash:    {report.built_codehash}")

    if r is VerificationResult.MISMATCH and report.on_chain and report.built:
        print(f"\nOn-chain (normalized):\n0x{report.on_chain.hex}")
        print(f"\nBuilt (normalized):\n0x{report.built.hex}")

    for w in report.warnings:
        print(f"⚠️  {w}")

    if verbose and report.metrics:
        print(f"\nMetrics: {json.dumps(report.metrics, sort_keys=True)}")


def cmd_verify(args) -> int:
    """Verify an on-chain deployment against a source revision."""
    settings = Settings.from_args(args)
    metrics = Metrics()
    trace_source, builder = sources_for(settings, metrics)
    report = verify(settings, trace_source, builder, metrics)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    else:
        print_report(report, args.verbose)
    return EXIT_CODES[report.result]


def cmd_normalize(args) -> int:
    """Print bytecode with its metadata section removed."""
    markers = markers_from(args) or DEFAULT_MARKERS
    code = read_bytecode(args.bytecode, "input")
    n = normalize(code, markers)
    if args.json:
        print(json.dumps({"bytecode": "0x" + n.hex, "marker": n.marker, "stripped_bytes": n.stripped_bytes}))
    else:
        print("0x" + n.hex)
        if n.marker is None:
            print("ℹ️  no metadata marker found", file=sys.stderr)
        else:
            print(f"ℹ️  stripped {n.stripped_bytes} bytes at marker {n.marker}", file=sys.stderr)
    return 0


def cmd_compare(args) -> int:
    """Compare two bytecode values offline."""
    markers = markers_from(args) or DEFAULT_MARKERS
    a = normalize(read_bytecode(args.left, "left"), markers)
    b = normalize(read_bytecode(args.right, "right"), markers)
    result = compare(a, b, markers)
    if result is VerificationResult.MATCH:
        print(f"✅ Match ({len(a)} bytes after normalization)")
    else:
        print(f"❌ Mismatch at byte {first_difference(a, b)} ({len(a)} vs {len(b)} bytes)")
    return EXIT_CODES[result]


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--metadata-marker",
        action="append",
        default=[],
        help=f"Metadata marker hex or preset ({', '.join(KNOWN_MARKERS)}); repeatable (default: solc-cbor)",
    )
    # SUPPRESS keeps a top-level --verbose from being reset by the subcommand
    parser.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Debug logging and metrics")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="deploy-provenance",
        description="Verify that deployed init code was compiled from a given source revision",
    )
    p.add_argument("--version", action="version", version=f"deploy-provenance {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging and metrics")
    sub = p.add_subparsers(dest="cmd", required=True)

    # verify
    v = sub.add_parser("verify", help="Verify a deployment transaction against source")
    v.add_argument("--transaction", help="Transaction hash in which the contract was deployed")
    v.add_argument("--contract-address", help="Address of the contract that should be checked")
    v.add_argument("--git", help="Git url of the repository to check against")
    v.add_argument("--commit", help="Optional: commit hash of the git repo")
    v.add_argument("--contract-name", help="Name of the contract (in the git repository) to check against")
    src = v.add_mutually_exclusive_group()
    src.add_argument("--rpc", help="HTTP RPC url (has to support `trace` calls)")
    src.add_argument("--trace-file", help="Saved trace_transaction response (JSON)")
    v.add_argument("--timeout", type=float, default=None, help="Seconds allowed per build command")
    v.add_argument("--keep-workdir", action="store_true", help="Keep the temporary checkout")
    v.add_argument("--concurrent", action="store_true", help="Fetch trace and build at the same time")
    v.add_argument("--json", action="store_true", help="Print the report as JSON")
    _add_common_args(v)
    v.set_defaults(func=cmd_verify)

    # normalize
    n = sub.add_parser("normalize", help="Strip the metadata section from bytecode")
    n.add_argument("bytecode", help="Hex bytecode, or @file")
    n.add_argument("--json", action="store_true")
    _add_common_args(n)
    n.set_defaults(func=cmd_normalize)

    # compare
    c = sub.add_parser("compare", help="Compare two bytecodes after normalization")
    c.add_argument("left", help="Hex bytecode, or @file")
    c.add_argument("right", help="Hex bytecode, or @file")
    _add_common_args(c)
    c.set_defaults(func=cmd_compare)

    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except ProvenanceError as e:
        if args.verbose:
            logger.exception("verification aborted")
        print_failure(e)
        return EXIT_INFRA
    except KeyboardInterrupt:
        print("❌ Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
