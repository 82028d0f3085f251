"""
NFTGATE Core Modules
====================

Rule translation and reconciliation engine for nftables.

Modules:
- expressions: Decoded nft JSON expression model
- rule_formatter: Expression formatter and rule renderer
- ruleset: Tables, chains and rules with a handle index
- nft_kernel: Kernel collaborator backed by the nft binary
- simulated_kernel: In-memory kernel collaborator
- priv_exec: Allow-listed command execution
- ruleset_client: Snapshot fetching
- context_resolver: Default context for new rules
- mutation_orchestrator: Add, edit and delete sequencing
- audit_log: JSON-lines audit trail
- engine: Wiring from config
"""

from .errors import (
    FirewallError, ValidationError, KernelRejection, TransportError,
    PartialMutationError, CommandNotAllowed,
)
from .rule_formatter import format_expression, render_rule
from .ruleset import Ruleset, Rule, Table, Chain
from .nft_kernel import KernelCollaborator, NftKernel
from .simulated_kernel import SimulatedKernel
from .ruleset_client import RulesetClient, RulesetSnapshot
from .context_resolver import RuleContext, resolve_default_context, available_choices
from .mutation_orchestrator import (
    Draft, MutationOrchestrator, MutationResult, MutationState, MutationTrace,
)
from .audit_log import AuditLog
from .engine import FirewallEngine

__all__ = [
    # Errors
    "FirewallError",
    "ValidationError",
    "KernelRejection",
    "TransportError",
    "PartialMutationError",
    "CommandNotAllowed",
    # Rendering
    "format_expression",
    "render_rule",
    # Model
    "Ruleset",
    "Rule",
    "Table",
    "Chain",
    # Kernel
    "KernelCollaborator",
    "NftKernel",
    "SimulatedKernel",
    "RulesetClient",
    "RulesetSnapshot",
    # Editing
    "RuleContext",
    "resolve_default_context",
    "available_choices",
    "Draft",
    "MutationOrchestrator",
    "MutationResult",
    "MutationState",
    "MutationTrace",
    "AuditLog",
    "FirewallEngine"
]

__version__ = "1.0.0"
