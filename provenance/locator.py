"""
Selection of the contract-creation step inside a transaction trace.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from eth_utils import to_checksum_address

from provenance.errors import AmbiguousCreation, CreationNotFound
from provenance.models import ActionType, CreationRecord, TraceEntry

logger = logging.getLogger(__name__)


def creation_candidates(traces: Sequence[TraceEntry], target: str) -> List[TraceEntry]:
    """All successful CREATE entries whose resulting address is `target`."""
    target = to_checksum_address(target)
    return [
        t for t in traces
        if t.action_type is ActionType.CREATE
        and t.result_present
        and t.created_address == target
    ]


def locate_creation(traces: Sequence[TraceEntry], target: str) -> CreationRecord:
    """
    Pick the single creation of `target` from a transaction trace.

    Raises:
        CreationNotFound: no successful create produced `target`
        AmbiguousCreation: more than one create produced `target`
    """
    target = to_checksum_address(target)
    matches = creation_candidates(traces, target)

    if len(matches) == 1:
        entry = matches[0]
        logger.info(f"Creation of {target} found at trace address {entry.trace_address}")
        return CreationRecord(entry=entry, target=target)

    if len(matches) > 1:
        raise AmbiguousCreation(
            f"{len(matches)} create actions in this transaction resulted in {target}",
            count=len(matches),
        )

    failed = [
        t for t in traces
        if t.action_type is ActionType.CREATE and not t.result_present
    ]
    if failed:
        # A reverted create reports no address, so we cannot tell if it was ours
        reasons = ", ".join(sorted({t.error or "no result" for t in failed}))
        raise CreationNotFound(
            f"{target} was not created by this transaction; "
            f"{len(failed)} create action(s) without a result ({reasons})"
        )
    creates = sum(1 for t in traces if t.action_type is ActionType.CREATE)
    raise CreationNotFound(
        f"{target} was not created by this transaction "
        f"({len(traces)} trace entries, {creates} successful create(s))"
    )
