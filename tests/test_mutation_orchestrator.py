"""
Mutation Orchestrator Tests
===========================

Tests for Add, Edit and Delete sequencing against the in-memory kernel.

Tests include:
- Validation fails closed
- Handle freshness after Add
- Edit hazard (delete ok, add rejected)
- Atomic replace and strategy selection
- Per-submission trace and audit entries
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import Mock

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.errors import (
    KernelRejection, PartialMutationError, TransportError, ValidationError,
)
from core.mutation_orchestrator import (
    Draft, EditStrategy, MutationOrchestrator, MutationState, MutationTrace,
)
from core.ruleset import Ruleset
from core.ruleset_client import RulesetClient


def listing(kernel) -> Ruleset:
    return RulesetClient(kernel).fetch().ruleset


def make_orchestrator(kernel, strategy="sequential", **kwargs):
    return MutationOrchestrator(kernel, RulesetClient(kernel), edit_strategy=strategy, **kwargs)


def handle_of(kernel, comment: str) -> int:
    return next(r.handle for r in listing(kernel) if r.comment == comment)


class TestDraft:

    def test_from_dict_defaults(self):
        draft = Draft.from_dict({"table": "filter", "chain": "INPUT", "raw": "drop"})
        assert draft.family == "inet"
        assert draft.origin_handle is None
        assert not draft.is_edit

    def test_origin_handle_marks_edit(self):
        draft = Draft.from_dict({"family": "ip", "table": "nat", "chain": "POSTROUTING",
                                 "raw": "masquerade", "origin_handle": 9})
        assert draft.is_edit
        assert draft.origin_handle == 9

    def test_listed_handle_is_not_an_origin(self):
        draft = Draft.from_dict({"family": "inet", "table": "filter", "chain": "INPUT",
                                 "raw": "tcp dport 22 accept", "handle": 6})
        assert not draft.is_edit
        assert draft.origin_handle is None


class TestValidation:
    """VALIDATING fails closed with no kernel call."""

    @pytest.mark.parametrize("field", ["family", "table", "chain", "raw_statement"])
    def test_blank_field_rejected(self, field):
        kernel = Mock()
        draft = Draft("inet", "filter", "INPUT", "accept")
        setattr(draft, field, "  ")

        with pytest.raises(ValidationError) as exc:
            make_orchestrator(kernel).add(draft)

        assert exc.value.code == "FW003"
        assert kernel.add_rule.call_count == 0
        assert kernel.delete_rule.call_count == 0

    @pytest.mark.parametrize("origin", ["abc", 0, -3, True])
    def test_bad_origin_handle_rejected(self, origin):
        kernel = Mock()
        draft = Draft("inet", "filter", "INPUT", "accept", origin_handle=origin)

        with pytest.raises(ValidationError) as exc:
            make_orchestrator(kernel).edit(draft)

        assert "origin_handle" in exc.value.missing_fields
        assert kernel.delete_rule.call_count == 0

    def test_delete_requires_handle(self):
        kernel = Mock()
        with pytest.raises(ValidationError):
            make_orchestrator(kernel).delete("inet", "filter", "INPUT", "")
        assert kernel.delete_rule.call_count == 0

    def test_trace_attached_to_error(self):
        with pytest.raises(ValidationError) as exc:
            make_orchestrator(Mock()).add(Draft("inet", "filter", "", "accept"))

        trace = exc.value.trace
        assert trace.entries[0].state == MutationState.VALIDATING
        assert trace.state == MutationState.FAILED
        assert exc.value.to_dict()["trace"][-1]["state"] == "failed"

    @pytest.mark.parametrize("comment", ['say "hi"', "two\nlines", "cr\rhere"])
    def test_unrepresentable_comment_rejected(self, comment):
        kernel = Mock()
        draft = Draft("inet", "filter", "INPUT", "accept", comment=comment)

        with pytest.raises(ValidationError) as exc:
            make_orchestrator(kernel).add(draft)

        assert exc.value.missing_fields == ["comment"]
        assert kernel.add_rule.call_count == 0

    def test_single_quotes_in_comment_accepted(self, empty_kernel):
        result = make_orchestrator(empty_kernel).add(
            Draft("inet", "filter", "INPUT", "accept", comment="ops' rule"))
        assert result.snapshot.ruleset.find_rule(result.handle, "inet", "filter").comment == "ops' rule"


class TestAdd:

    def test_handle_freshness(self, sim_kernel):
        before = set(listing(sim_kernel).handles())

        result = make_orchestrator(sim_kernel).add(
            Draft("inet", "filter", "INPUT", "udp dport 53 accept", comment="DNS"))

        assert result.succeeded
        assert result.handle not in before
        rule = result.snapshot.ruleset.find_rule(result.handle, "inet", "filter")
        assert rule.display == "udp dport 53 accept"
        assert rule.comment == "DNS"

    def test_rejection_passed_through(self, sim_kernel):
        with pytest.raises(KernelRejection) as exc:
            make_orchestrator(sim_kernel).add(Draft("inet", "filter", "MISSING", "accept"))
        assert "No such file or directory" in exc.value.kernel_message

    def test_transport_error_passed_through(self, failing_kernel):
        with pytest.raises(TransportError):
            make_orchestrator(failing_kernel).add(Draft("inet", "filter", "INPUT", "accept"))


class TestDelete:

    def test_delete_removes_rule(self, sim_kernel):
        handle = handle_of(sim_kernel, "SSH")
        result = make_orchestrator(sim_kernel).delete("inet", "filter", "INPUT", str(handle))

        assert result.removed_handle == handle
        assert handle not in result.snapshot.ruleset.handles()

    def test_unknown_handle_message_verbatim(self, empty_kernel):
        with pytest.raises(KernelRejection) as exc:
            make_orchestrator(empty_kernel).delete("inet", "filter", "INPUT", 42)

        assert exc.value.code == "FW002"
        assert exc.value.kernel_message == (
            "Error: Could not process rule: No such file or directory\n"
            "delete rule inet filter INPUT handle 42"
        )


class TestSequentialEdit:
    """Delete-then-add, including the lost-rule hazard."""

    def test_edit_replaces_rule(self, sim_kernel):
        origin = handle_of(sim_kernel, "SSH")
        result = make_orchestrator(sim_kernel).edit(
            Draft("inet", "filter", "INPUT", "tcp dport 2222 accept", "SSH", origin_handle=origin))

        handles = result.snapshot.ruleset.handles()
        assert not result.atomic
        assert origin not in handles
        assert result.handle in handles
        assert result.removed_handle == origin

    def test_add_failure_after_delete_is_partial(self, empty_kernel):
        for port in range(5):
            empty_kernel.add_rule("inet", "filter", "INPUT", f"tcp dport {8000 + port} accept")
        assert listing(empty_kernel).handles()[-1] == 7

        kernel_message = "Error: syntax error, unexpected newline"
        empty_kernel.add_rule = Mock(side_effect=KernelRejection(kernel_message))

        draft = Draft("inet", "filter", "INPUT", "tcp dport accept", origin_handle=7)
        with pytest.raises(PartialMutationError) as exc:
            make_orchestrator(empty_kernel).edit(draft)

        assert exc.value.lost_handle == 7
        assert exc.value.kernel_message == kernel_message
        assert exc.value.draft is draft
        assert exc.value.http_status == 409

        after = listing(empty_kernel)
        assert 7 not in after.handles()
        assert not after.find_by_statement("tcp dport accept")

    def test_delete_failure_aborts_before_add(self, sim_kernel):
        sim_kernel.add_rule = Mock()
        draft = Draft("inet", "filter", "INPUT", "drop", origin_handle=999)

        with pytest.raises(KernelRejection):
            make_orchestrator(sim_kernel).edit(draft)

        sim_kernel.add_rule.assert_not_called()

    def test_transport_failure_after_delete_is_not_partial(self, sim_kernel):
        origin = handle_of(sim_kernel, "SSH")
        kernel_add = sim_kernel.add_rule

        def committed_then_timed_out(*args, **kwargs):
            kernel_add(*args, **kwargs)
            raise TransportError("nft timed out after 10s")

        sim_kernel.add_rule = Mock(side_effect=committed_then_timed_out)
        draft = Draft("inet", "filter", "INPUT", "tcp dport 2222 accept", origin_handle=origin)

        with pytest.raises(TransportError) as exc:
            make_orchestrator(sim_kernel).edit(draft)

        assert not isinstance(exc.value, PartialMutationError)
        assert exc.value.code == "FW004"
        assert any("outcome unknown" in line for line in exc.value.trace.lines())
        assert exc.value.trace.state == MutationState.FAILED

        after = listing(sim_kernel)
        assert origin not in after.handles()
        assert after.find_by_statement("tcp dport 2222 accept")

    def test_trace_states_in_order(self, sim_kernel):
        origin = handle_of(sim_kernel, "Web")
        result = make_orchestrator(sim_kernel).edit(
            Draft("inet", "filter", "INPUT", "tcp dport 443 accept", origin_handle=origin))

        states = [e.state for e in result.trace.entries]
        assert states[0] == MutationState.VALIDATING
        assert states.index(MutationState.DELETING_OLD) < states.index(MutationState.ADDING)
        assert states[-1] == MutationState.SUCCEEDED
        stamps = [e.timestamp for e in result.trace.entries]
        assert stamps == sorted(stamps)


class TestAtomicEdit:

    def test_auto_uses_transaction(self, atomic_kernel):
        origin = handle_of(atomic_kernel, "SSH")
        result = make_orchestrator(atomic_kernel, "auto").edit(
            Draft("inet", "filter", "INPUT", "tcp dport 2222 accept", origin_handle=origin))

        assert result.atomic
        assert MutationState.REPLACING in [e.state for e in result.trace.entries]
        assert origin not in result.snapshot.ruleset.handles()
        assert result.snapshot.ruleset.find_by_statement("tcp dport 2222 accept")

    def test_atomic_failure_keeps_original(self, atomic_kernel):
        origin = handle_of(atomic_kernel, "SSH")
        atomic_kernel.replace_rule = Mock(side_effect=KernelRejection("Error: syntax error"))

        with pytest.raises(KernelRejection):
            make_orchestrator(atomic_kernel, "auto").edit(
                Draft("inet", "filter", "INPUT", "tcp dport", origin_handle=origin))

        assert origin in listing(atomic_kernel).handles()

    def test_sequential_strategy_skips_transaction(self, atomic_kernel):
        origin = handle_of(atomic_kernel, "SSH")
        result = make_orchestrator(atomic_kernel, "sequential").edit(
            Draft("inet", "filter", "INPUT", "drop", origin_handle=origin))
        assert not result.atomic

    def test_atomic_strategy_falls_back_without_support(self, sim_kernel):
        orchestrator = make_orchestrator(sim_kernel, EditStrategy.ATOMIC)
        origin = handle_of(sim_kernel, "SSH")
        result = orchestrator.edit(Draft("inet", "filter", "INPUT", "drop", origin_handle=origin))
        assert not result.atomic
        assert result.succeeded


class TestRefetchAndAudit:

    def test_submit_routes_by_origin(self, orchestrator, sim_kernel):
        added = orchestrator.submit(Draft("inet", "filter", "INPUT", "drop"))
        assert added.operation == "add"

        edited = orchestrator.submit(Draft("inet", "filter", "INPUT", "reject",
                                           origin_handle=added.handle))
        assert edited.operation == "edit"

    def test_refetch_failure_does_not_undo_success(self, sim_kernel):
        client = Mock()
        client.fetch.side_effect = TransportError("nft timed out")
        orchestrator = MutationOrchestrator(sim_kernel, client)

        result = orchestrator.add(Draft("inet", "filter", "INPUT", "drop"))
        assert result.succeeded
        assert result.snapshot is None
        assert result.refetched is False
        assert result.to_dict()["refetched"] is False
        assert "rules" not in result.to_dict()

    def test_refetched_flag_set(self, orchestrator):
        result = orchestrator.add(Draft("inet", "filter", "INPUT", "drop"))
        assert result.to_dict()["refetched"] is True

    def test_refetch_disabled(self, sim_kernel):
        client = Mock()
        orchestrator = MutationOrchestrator(sim_kernel, client, refetch=False)
        result = orchestrator.add(Draft("inet", "filter", "INPUT", "drop"))
        client.fetch.assert_not_called()
        assert result.refetched is False

    def test_traces_are_per_submission(self, orchestrator):
        first = orchestrator.add(Draft("inet", "filter", "INPUT", "drop"))
        second = orchestrator.add(Draft("inet", "filter", "INPUT", "accept"))
        assert first.trace is not second.trace
        assert len(first.trace) == len(second.trace)

    def test_audit_entries(self, orchestrator, audit_log):
        orchestrator.add(Draft("inet", "filter", "INPUT", "drop"), user="alice", ip_address="10.0.0.5")
        with pytest.raises(KernelRejection):
            orchestrator.delete("inet", "filter", "INPUT", 999, user="bob")

        entries = audit_log.get_logs()
        assert [e["action"] for e in entries] == ["firewall.delete", "firewall.add"]
        assert entries[0]["success"] is False
        assert entries[1]["user"] == "alice"
        assert entries[1]["ip_address"] == "10.0.0.5"


class TestMutationTrace:

    def test_append_only_copy(self):
        trace = MutationTrace()
        trace.log(MutationState.VALIDATING, "one")
        trace.entries.clear()
        assert len(trace) == 1
        assert trace.lines()[0].endswith(" - one")
