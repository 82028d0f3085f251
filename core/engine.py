#!/usr/bin/env python3
"""
NFTGATE Firewall Engine
=======================

Wires the rule engine together from config: privileged executor, kernel
collaborator (live ``nft`` or the in-memory simulator), ruleset client,
mutation orchestrator and audit log.

The Flask boundary and the CLI both talk to one FirewallEngine.

Author: Team NFTGATE
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from .audit_log import AuditLog
from .context_resolver import available_choices, resolve_default_context
from .mutation_orchestrator import Draft, MutationOrchestrator, MutationResult
from .nft_kernel import KernelCollaborator, NftKernel
from .priv_exec import ALLOWED_COMMANDS, PrivilegedExecutor
from .ruleset_client import RulesetClient, RulesetSnapshot
from .simulated_kernel import SimulatedKernel


class FirewallEngine:
    """
    Rule translation and reconciliation engine.

    Args:
        config: Application configuration dict
        kernel: Kernel collaborator; built from config when omitted
        audit_log: AuditLog; built from config when omitted
    """

    def __init__(self, config: Dict[str, Any],
                 kernel: Optional[KernelCollaborator] = None,
                 audit_log: Optional[AuditLog] = None):
        self.config = config
        fw_config = config.get("firewall", {})
        sim_config = config.get("simulation", {})
        audit_config = config.get("audit", {})

        self.simulation_mode = bool(sim_config.get("enabled", False))
        self.executor = PrivilegedExecutor(
            timeout=fw_config.get("command_timeout", 10),
            use_sudo=fw_config.get("use_sudo", False),
            allowed_commands=ALLOWED_COMMANDS | {fw_config.get("nft_binary", "nft")},
        )

        if kernel is None:
            kernel = self._build_kernel(fw_config, sim_config)
        self.kernel = kernel

        if audit_log is None:
            audit_log = AuditLog(path=audit_config.get("file", "data/audit.log"),
                                 enabled=audit_config.get("enabled", True))
        self.audit_log = audit_log

        self.client = RulesetClient(
            kernel, degrade_to_placeholder=fw_config.get("degrade_to_placeholder", False))
        self.orchestrator = MutationOrchestrator(
            kernel, self.client,
            edit_strategy=fw_config.get("edit_strategy", "auto"),
            refetch=fw_config.get("refetch_after_mutation", True),
            audit_log=self.audit_log,
        )
        self.started_at = datetime.now()

        logger.info(f"FirewallEngine initialized ({type(kernel).__name__})")

    def _build_kernel(self, fw_config: Dict[str, Any],
                      sim_config: Dict[str, Any]) -> KernelCollaborator:
        if self.simulation_mode:
            return SimulatedKernel(
                tables=sim_config.get("tables", []),
                supports_transactions=sim_config.get("supports_transactions", True),
            )
        return NftKernel(self.executor, nft_binary=fw_config.get("nft_binary", "nft"))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_rules(self) -> RulesetSnapshot:
        return self.client.fetch()

    def get_context(self) -> Dict[str, Any]:
        """Default (family, table, chain) for a new rule plus the offered choices."""
        snapshot = self.client.fetch()
        return {
            "default": resolve_default_context(snapshot.ruleset).to_dict(),
            "choices": available_choices(snapshot.ruleset),
            "warning": snapshot.warning,
        }

    def get_tables(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.client.fetch().ruleset.tables]

    def get_recent_commands(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self.executor.get_recent_commands(limit)

    def get_status(self) -> Dict[str, Any]:
        return {
            "mode": "simulation" if self.simulation_mode else "live",
            "kernel": type(self.kernel).__name__,
            "supports_transactions": bool(getattr(self.kernel, "supports_transactions", False)),
            "edit_strategy": self.orchestrator.edit_strategy.value,
            "started_at": self.started_at.isoformat(),
        }

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def submit(self, draft: Draft, user: str = "system", ip_address: str = "") -> MutationResult:
        return self.orchestrator.submit(draft, user=user, ip_address=ip_address)

    def add(self, draft: Draft, user: str = "system", ip_address: str = "") -> MutationResult:
        """Add the draft as a new rule, ignoring any origin handle."""
        return self.orchestrator.add(draft, user=user, ip_address=ip_address)

    def delete(self, family: str, table: str, chain: str, handle: Any,
               user: str = "system", ip_address: str = "") -> MutationResult:
        return self.orchestrator.delete(family, table, chain, handle,
                                        user=user, ip_address=ip_address)
