"""
End-to-end verification of one deployment.

Two independent branches feed the comparison:
- trace: fetch_trace -> locate_creation -> on-chain init code
- build: checkout + compile -> built init code

With `Settings.CONCURRENT` both branches run at once and both are always
awaited; a failure in one is never hidden by success in the other.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional, Tuple, Union

from provenance.build.project import BuildProvider, ProjectBuilder, SourceRef
from provenance.build.tools import Toolbox
from provenance.compare import codehash, compare, first_difference
from provenance.errors import AmbiguousCreation, CreationNotFound, ProvenanceError, StageFailures
from provenance.eth.metrics import Metrics
from provenance.eth.settings import Settings
from provenance.eth.trace_source import JsonTraceSource, TraceSource, Web3TraceSource
from provenance.locator import locate_creation
from provenance.models import RawBytecode, VerificationReport, VerificationResult
from provenance.normalize import normalize
from provenance.opcodes import opcode_warnings

logger = logging.getLogger(__name__)

Selection = Union[RawBytecode, CreationNotFound, AmbiguousCreation]


def _trace_branch(settings: Settings, source: TraceSource, metrics: Metrics) -> Selection:
    """On-chain init code, or the selection outcome that prevents having one."""
    with metrics.timed("trace_fetch_ms"):
        traces = source.fetch_trace(settings.TRANSACTION)
    metrics.observe("trace_entries", len(traces))
    try:
        record = locate_creation(traces, settings.CONTRACT_ADDRESS)
    except (CreationNotFound, AmbiguousCreation) as outcome:
        return outcome
    return record.init_code()


def _build_branch(settings: Settings, builder: BuildProvider, metrics: Metrics) -> RawBytecode:
    source = SourceRef(settings.GIT_URL, settings.COMMIT)
    try:
        with metrics.timed("build_ms"):
            return builder.build(source, settings.CONTRACT_NAME)
    except ProvenanceError:
        metrics.inc("build_errors_total")
        raise


def _report(settings: Settings, metrics: Metrics, result: VerificationResult, **kw) -> VerificationReport:
    return VerificationReport(
        result=result,
        transaction=settings.TRANSACTION,
        contract_address=settings.CONTRACT_ADDRESS,
        contract_name=settings.CONTRACT_NAME,
        metrics=metrics.snapshot(),
        **kw,
    )


def _selection_report(
    settings: Settings, metrics: Metrics, outcome: Union[CreationNotFound, AmbiguousCreation]
) -> VerificationReport:
    if isinstance(outcome, AmbiguousCreation):
        return _report(
            settings, metrics, VerificationResult.AMBIGUOUS,
            detail=str(outcome), candidates=outcome.count,
        )
    return _report(settings, metrics, VerificationResult.NOT_FOUND, detail=str(outcome))


def classify(
    settings: Settings, metrics: Metrics, on_chain: RawBytecode, built: RawBytecode
) -> VerificationReport:
    """Normalize both sides, compare, and assemble the report."""
    markers = settings.METADATA_MARKERS
    a = normalize(on_chain, markers)
    b = normalize(built, markers)
    result = compare(a, b, markers)

    diff: Optional[int] = None
    if result is VerificationResult.MISMATCH:
        diff = first_difference(a, b)
        detail = f"normalized init code differs at byte {diff} ({len(a)} vs {len(b)} bytes)"
        logger.info(detail)
    else:
        detail = f"{len(a)} bytes of init code match"

    return _report(
        settings, metrics, result,
        detail=detail,
        on_chain=a,
        built=b,
        on_chain_codehash=codehash(a),
        built_codehash=codehash(b),
        first_difference=diff,
        warnings=opcode_warnings(a),
    )


def _verify_sequential(
    settings: Settings, source: TraceSource, builder: BuildProvider, metrics: Metrics
) -> VerificationReport:
    selection = _trace_branch(settings, source, metrics)
    if not isinstance(selection, RawBytecode):
        # NOT_FOUND and AMBIGUOUS need no build
        return _selection_report(settings, metrics, selection)
    built = _build_branch(settings, builder, metrics)
    return classify(settings, metrics, selection, built)


def _verify_concurrent(
    settings: Settings, source: TraceSource, builder: BuildProvider, metrics: Metrics
) -> VerificationReport:
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="provenance") as pool:
        trace_f = pool.submit(_trace_branch, settings, source, metrics)
        build_f = pool.submit(_build_branch, settings, builder, metrics)
        wait([trace_f, build_f])

    failures: List[ProvenanceError] = []
    outcomes: List[object] = []
    for fut in (trace_f, build_f):
        exc = fut.exception()
        if exc is None:
            outcomes.append(fut.result())
        elif isinstance(exc, ProvenanceError):
            failures.append(exc)
        else:
            raise exc

    if len(failures) == 1:
        raise failures[0]
    if failures:
        raise StageFailures(failures)

    selection, built = outcomes
    if not isinstance(selection, RawBytecode):
        return _selection_report(settings, metrics, selection)
    return classify(settings, metrics, selection, built)


def verify(
    settings: Settings,
    trace_source: TraceSource,
    build_provider: BuildProvider,
    metrics: Optional[Metrics] = None,
) -> VerificationReport:
    """
    Run one verification.

    Returns a report for every classification (MATCH, MISMATCH, NOT_FOUND,
    AMBIGUOUS). Infrastructure problems are raised, not reported.

    Raises:
        RpcError: trace could not be fetched
        DependencyMissing / BuildFailure / ToolchainError: build failed
        MalformedBytecode: either init code is not valid hex
        StageFailures: both branches failed (concurrent mode only)
    """
    metrics = metrics or Metrics()
    logger.info(
        f"Verifying {settings.CONTRACT_NAME} at {settings.CONTRACT_ADDRESS} "
        f"from tx {settings.TRANSACTION} against {SourceRef(settings.GIT_URL, settings.COMMIT)}"
    )
    if settings.CONCURRENT:
        report = _verify_concurrent(settings, trace_source, build_provider, metrics)
    else:
        report = _verify_sequential(settings, trace_source, build_provider, metrics)
    logger.info(f"Verification result: {report.result.value}")
    return report


def sources_for(settings: Settings, metrics: Metrics) -> Tuple[TraceSource, BuildProvider]:
    """Default collaborators for a settings value."""
    if settings.TRACE_FILE:
        source: TraceSource = JsonTraceSource(settings.TRACE_FILE)
    else:
        source = Web3TraceSource.from_url(
            settings.RPC_URL, timeout=settings.RPC_TIMEOUT, metrics=metrics
        )
    builder = ProjectBuilder(
        tools=Toolbox(timeout=settings.BUILD_TIMEOUT),
        keep_workdir=settings.KEEP_WORKDIR,
    )
    return source, builder
