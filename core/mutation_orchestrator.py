#!/usr/bin/env python3
"""
NFTGATE Mutation Orchestrator
=============================

Sequences Add, Edit and Delete against the live kernel.

State flow for one submission:

    IDLE -> VALIDATING -> [DELETING_OLD] -> ADDING -> SUCCEEDED | FAILED
    IDLE -> VALIDATING -> REPLACING -> SUCCEEDED | FAILED        (atomic edit)
    IDLE -> VALIDATING -> DELETING -> SUCCEEDED | FAILED         (delete)

Edits either run as one kernel transaction (when the collaborator supports
it) or as delete-then-add. The sequential form can lose the original rule
if the add is rejected after the delete landed; that outcome is raised as
PartialMutationError and never retried. A transport failure on that add
leaves the outcome unknown; it is traced and re-raised as is.

Every submission carries its own MutationTrace: an ordered, timestamped
record of the steps attempted, returned to the caller and not persisted.

Author: Team NFTGATE
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger

from .errors import (
    FirewallError, KernelRejection, PartialMutationError, TransportError,
    ValidationError,
)
from .nft_kernel import KernelCollaborator
from .ruleset_client import RulesetClient, RulesetSnapshot


UNREPRESENTABLE_COMMENT_CHARS = ('"', "\n", "\r")


class MutationState(Enum):
    """Steps a submission moves through."""
    IDLE = "idle"
    VALIDATING = "validating"
    DELETING_OLD = "deleting_old"
    REPLACING = "replacing"
    ADDING = "adding"
    DELETING = "deleting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EditStrategy(Enum):
    """How an edit replaces the original rule."""
    AUTO = "auto"              # transaction when available, else sequential
    ATOMIC = "atomic"          # same as auto, but log loudly on fallback
    SEQUENTIAL = "sequential"  # always delete-then-add


@dataclass
class Draft:
    """
    An editable rule submission.

    ``raw_statement`` is sent to the kernel as typed; it is never parsed
    back into expressions here.
    """
    family: str
    table: str
    chain: str
    raw_statement: str
    comment: str = ""
    origin_handle: Optional[int] = None

    @property
    def is_edit(self) -> bool:
        return self.origin_handle is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "table": self.table,
            "chain": self.chain,
            "raw": self.raw_statement,
            "comment": self.comment,
            "origin_handle": self.origin_handle,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_family: str = "inet") -> "Draft":
        """Build a Draft from a request body (``raw`` or ``raw_statement``)."""
        origin = data.get("origin_handle")
        return cls(
            family=str(data.get("family") or default_family).strip(),
            table=str(data.get("table") or "").strip(),
            chain=str(data.get("chain") or "").strip(),
            raw_statement=str(data.get("raw_statement", data.get("raw")) or ""),
            comment=str(data.get("comment") or ""),
            origin_handle=origin if origin not in (None, "") else None,
        )


@dataclass
class TraceEntry:
    timestamp: datetime
    state: MutationState
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "state": self.state.value,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"{self.timestamp.strftime('%H:%M:%S')} - {self.message}"


class MutationTrace:
    """Append-only step log for one submission."""

    def __init__(self):
        self._entries: List[TraceEntry] = []
        self.state = MutationState.IDLE

    def log(self, state: MutationState, message: str) -> None:
        self.state = state
        self._entries.append(TraceEntry(datetime.now(), state, message))
        logger.info(f"[MUTATION] {state.value}: {message}")

    @property
    def entries(self) -> List[TraceEntry]:
        return list(self._entries)

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def lines(self) -> List[str]:
        return [str(e) for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class MutationResult:
    operation: str
    state: MutationState
    trace: MutationTrace
    handle: Optional[int] = None
    removed_handle: Optional[int] = None
    snapshot: Optional[RulesetSnapshot] = None
    atomic: bool = False
    refetched: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == MutationState.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.succeeded,
            "operation": self.operation,
            "state": self.state.value,
            "handle": self.handle,
            "removed_handle": self.removed_handle,
            "atomic": self.atomic,
            "refetched": self.refetched,
            "trace": self.trace.to_list(),
        }
        if self.snapshot is not None:
            data["rules"] = self.snapshot.ruleset.to_list()
        return data


def _parse_handle(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        handle = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return handle if handle > 0 else None


class MutationOrchestrator:
    """
    Runs rule mutations against a kernel collaborator.

    Args:
        kernel: Kernel collaborator that applies changes
        client: RulesetClient used to re-fetch after every success
        edit_strategy: EditStrategy (or its string value)
        refetch: Re-list the kernel after a successful mutation
        audit_log: Optional AuditLog receiving one entry per submission
    """

    def __init__(self, kernel: KernelCollaborator, client: RulesetClient,
                 edit_strategy=EditStrategy.AUTO, refetch: bool = True,
                 audit_log=None):
        self.kernel = kernel
        self.client = client
        self.edit_strategy = EditStrategy(edit_strategy)
        self.refetch = refetch
        self.audit_log = audit_log
        logger.info(f"MutationOrchestrator initialized (edit strategy: {self.edit_strategy.value})")

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def submit(self, draft: Draft, user: str = "system",
               ip_address: str = "") -> MutationResult:
        """Add the draft, or replace ``draft.origin_handle`` when set."""
        if draft.is_edit:
            return self.edit(draft, user=user, ip_address=ip_address)
        return self.add(draft, user=user, ip_address=ip_address)

    def add(self, draft: Draft, user: str = "system",
            ip_address: str = "") -> MutationResult:
        trace = MutationTrace()
        try:
            self._validate(draft, trace, require_origin=False)
            handle = self._add(draft, trace)
        except FirewallError as e:
            self._fail(e, trace)
            self._audit(user, "firewall.add", draft, ip_address, False, str(e))
            raise

        result = MutationResult(operation="add", state=MutationState.SUCCEEDED,
                                trace=trace, handle=handle)
        self._finish(result)
        self._audit(user, "firewall.add", draft, ip_address, True, f"handle {handle}")
        return result

    def edit(self, draft: Draft, user: str = "system",
             ip_address: str = "") -> MutationResult:
        trace = MutationTrace()
        try:
            self._validate(draft, trace, require_origin=True)
            origin = _parse_handle(draft.origin_handle)
            if self._use_transaction(trace):
                handle = self._replace(draft, origin, trace)
                atomic = True
            else:
                self._delete_old(draft, origin, trace)
                handle = self._add_after_delete(draft, origin, trace)
                atomic = False
        except FirewallError as e:
            self._fail(e, trace)
            self._audit(user, "firewall.edit", draft, ip_address, False, str(e))
            raise

        result = MutationResult(operation="edit", state=MutationState.SUCCEEDED,
                                trace=trace, handle=handle, removed_handle=origin,
                                atomic=atomic)
        self._finish(result)
        self._audit(user, "firewall.edit", draft, ip_address, True,
                    f"handle {origin} -> {handle}")
        return result

    def delete(self, family: str, table: str, chain: str, handle: Any,
               user: str = "system", ip_address: str = "") -> MutationResult:
        trace = MutationTrace()
        resource = f"{family} {table} {chain} handle {handle}"
        try:
            trace.log(MutationState.VALIDATING, "Validating delete request...")
            missing = [name for name, value in
                       (("family", family), ("table", table), ("chain", chain))
                       if not str(value or "").strip()]
            parsed = _parse_handle(handle)
            if parsed is None:
                missing.append("handle")
            if missing:
                raise ValidationError(f"Missing required fields: {', '.join(missing)}",
                                      missing_fields=missing)

            trace.log(MutationState.DELETING, f"Deleting rule {resource}...")
            self.kernel.delete_rule(family, table, chain, parsed)
            trace.log(MutationState.DELETING, "Delete success.")
        except FirewallError as e:
            self._fail(e, trace)
            self._audit_raw(user, "firewall.delete", resource, ip_address, False, str(e))
            raise

        result = MutationResult(operation="delete", state=MutationState.SUCCEEDED,
                                trace=trace, removed_handle=parsed)
        self._finish(result)
        self._audit_raw(user, "firewall.delete", resource, ip_address, True, "")
        return result

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _validate(self, draft: Draft, trace: MutationTrace, require_origin: bool) -> None:
        trace.log(MutationState.VALIDATING, "Submit received. Validating...")
        trace.log(MutationState.VALIDATING,
                  f"Target: {draft.family} | {draft.table} | {draft.chain}")

        missing = [name for name, value in (
            ("family", draft.family),
            ("table", draft.table),
            ("chain", draft.chain),
            ("raw", draft.raw_statement),
        ) if not str(value or "").strip()]

        if require_origin and _parse_handle(draft.origin_handle) is None:
            missing.append("origin_handle")

        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}",
                                  missing_fields=missing)

        # nft comment literals cannot carry these
        if any(ch in draft.comment for ch in UNREPRESENTABLE_COMMENT_CHARS):
            raise ValidationError("Comment may not contain double quotes or line breaks",
                                  missing_fields=["comment"])

    def _use_transaction(self, trace: MutationTrace) -> bool:
        if self.edit_strategy == EditStrategy.SEQUENTIAL:
            return False
        if getattr(self.kernel, "supports_transactions", False):
            return True
        if self.edit_strategy == EditStrategy.ATOMIC:
            logger.warning("Atomic edit requested but the kernel collaborator has "
                           "no transaction support; falling back to delete-then-add")
        trace.log(trace.state, "Transactions unavailable; using delete-then-add.")
        return False

    def _add(self, draft: Draft, trace: MutationTrace) -> Optional[int]:
        trace.log(MutationState.ADDING, f"Adding rule: {draft.raw_statement.strip()}")
        handle = self.kernel.add_rule(draft.family, draft.table, draft.chain,
                                      draft.raw_statement, draft.comment)
        trace.log(MutationState.ADDING, f"Add success. New handle: {handle}")
        return handle

    def _delete_old(self, draft: Draft, origin: int, trace: MutationTrace) -> None:
        trace.log(MutationState.DELETING_OLD, f"Deleting old rule handle {origin}...")
        try:
            self.kernel.delete_rule(draft.family, draft.table, draft.chain, origin)
        except FirewallError as e:
            trace.log(MutationState.DELETING_OLD, f"Delete failed: {e.message}")
            raise
        trace.log(MutationState.DELETING_OLD, "Delete success.")

    def _add_after_delete(self, draft: Draft, origin: int,
                          trace: MutationTrace) -> Optional[int]:
        try:
            return self._add(draft, trace)
        except KernelRejection as e:
            trace.log(MutationState.ADDING,
                      f"Add failed after delete; rule handle {origin} is gone: {e.message}")
            logger.error(f"Partial mutation: handle {origin} deleted, replacement rejected: {e.message}")
            raise PartialMutationError(lost_handle=origin, kernel_message=e.message,
                                       draft=draft) from e
        except TransportError as e:
            # The add may or may not have committed
            trace.log(MutationState.ADDING,
                      f"Rule handle {origin} was deleted; add outcome unknown: {e.message}")
            logger.error(f"Edit of handle {origin}: delete done, add outcome unknown: {e.message}")
            raise

    def _replace(self, draft: Draft, origin: int, trace: MutationTrace) -> Optional[int]:
        trace.log(MutationState.REPLACING,
                  f"Replacing rule handle {origin} in one transaction...")
        handle = self.kernel.replace_rule(draft.family, draft.table, draft.chain,
                                          origin, draft.raw_statement, draft.comment)
        trace.log(MutationState.REPLACING, f"Replace success. New handle: {handle}")
        return handle

    def _fail(self, error: FirewallError, trace: MutationTrace) -> None:
        trace.log(MutationState.FAILED, f"{type(error).__name__}: {error.message}")
        error.trace = trace

    def _finish(self, result: MutationResult) -> None:
        """Re-fetch the kernel's truth before declaring success."""
        trace = result.trace
        if self.refetch:
            trace.log(trace.state, "Success! Refreshing rules...")
            try:
                result.snapshot = self.client.fetch()
                result.refetched = True
            except TransportError as e:
                trace.log(trace.state, f"Refresh failed: {e.message}")
        trace.log(MutationState.SUCCEEDED, f"{result.operation.capitalize()} complete.")
        result.state = MutationState.SUCCEEDED

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def _audit(self, user: str, action: str, draft: Draft, ip_address: str,
               success: bool, details: str) -> None:
        resource = f"{draft.family} {draft.table} {draft.chain}"
        if draft.origin_handle is not None:
            resource += f" handle {draft.origin_handle}"
        self._audit_raw(user, action, resource, ip_address, success,
                        f"{draft.raw_statement.strip()} ({details})" if details
                        else draft.raw_statement.strip())

    def _audit_raw(self, user: str, action: str, resource: str, ip_address: str,
                   success: bool, details: str) -> None:
        if self.audit_log is not None:
            self.audit_log.log_event(user=user, action=action, resource=resource,
                                     details=details, ip_address=ip_address,
                                     success=success)
