#!/usr/bin/env python3
"""
NFTGATE Simulated Kernel
========================

In-memory stand-in for the nftables kernel, used by ``--simulate`` and by
the test-suite.

Behaves like the real collaborator where it matters to the rule engine:
- handles are allocated from a monotonically increasing counter and never
  reused
- adding to an unknown table/chain or deleting an unknown handle fails with
  nft's own error wording
- listings are produced in ``nft -j list ruleset`` shape

Statements are stored as plain text (they are not parsed), unless a rule
was seeded with a JSON ``expr`` list.

Author: Team NFTGATE
"""

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from loguru import logger

from .errors import (
    ERR_FIREWALL_ADD_FAILED, ERR_FIREWALL_DELETE_FAILED, KernelRejection,
)
from .nft_kernel import KernelCollaborator, build_statement


@dataclass
class _SimChain:
    name: str
    type: Optional[str] = None
    hook: Optional[str] = None
    prio: Optional[int] = None
    policy: Optional[str] = None
    handle: int = 0


@dataclass
class _SimTable:
    family: str
    name: str
    handle: int = 0
    chains: Dict[str, _SimChain] = field(default_factory=dict)


@dataclass
class _SimRule:
    family: str
    table: str
    chain: str
    handle: int
    expr: Union[str, List[Any]]
    comment: str = ""


class SimulatedKernel(KernelCollaborator):
    """
    In-memory kernel collaborator.

    Args:
        tables: Seed description, a list of
            ``{"family", "name", "chains": [{"name", "hook", ...}],
            "rules": [{"chain", "statement" | "expr", "comment"}]}``
        supports_transactions: Whether replace_rule is offered
        warning: Warning text returned with every listing
    """

    def __init__(self, tables: Optional[List[Dict[str, Any]]] = None,
                 supports_transactions: bool = False,
                 warning: Optional[str] = None):
        self.supports_transactions = supports_transactions
        self.warning = warning
        self._tables: Dict[Tuple[str, str], _SimTable] = {}
        self._rules: List[_SimRule] = []
        self._next_handle = 1
        self._lock = threading.Lock()

        for seed in tables or []:
            self._seed_table(seed)

        logger.info(f"SimulatedKernel initialized with {len(self._tables)} tables, "
                    f"{len(self._rules)} rules")

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def _allocate(self) -> int:
        handle = self._next_handle
        self._next_handle += 1
        return handle

    def _seed_table(self, seed: Dict[str, Any]) -> None:
        table = self.add_table(seed.get("family", "inet"), seed["name"])
        for chain in seed.get("chains", []):
            self.add_chain(table.family, table.name, chain["name"],
                           type=chain.get("type"), hook=chain.get("hook"),
                           prio=chain.get("prio"), policy=chain.get("policy"))
        for rule in seed.get("rules", []):
            if rule["chain"] not in table.chains:
                self.add_chain(table.family, table.name, rule["chain"])
            expr = rule.get("expr", rule.get("statement", ""))
            self._rules.append(_SimRule(
                family=table.family, table=table.name, chain=rule["chain"],
                handle=self._allocate(), expr=copy.deepcopy(expr),
                comment=rule.get("comment", ""),
            ))

    def add_table(self, family: str, name: str) -> _SimTable:
        key = (family, name)
        if key not in self._tables:
            self._tables[key] = _SimTable(family=family, name=name,
                                          handle=self._allocate())
        return self._tables[key]

    def add_chain(self, family: str, table: str, name: str, **attrs) -> _SimChain:
        owner = self.add_table(family, table)
        if name not in owner.chains:
            owner.chains[name] = _SimChain(name=name, handle=self._allocate(), **attrs)
        return owner.chains[name]

    # -------------------------------------------------------------------------
    # KernelCollaborator
    # -------------------------------------------------------------------------

    def list_ruleset(self) -> Tuple[Dict[str, Any], Optional[str]]:
        with self._lock:
            items: List[Dict[str, Any]] = [{"metainfo": {"json_schema_version": 1}}]
            for table in self._tables.values():
                items.append({"table": {"family": table.family, "name": table.name,
                                        "handle": table.handle}})
                for chain in table.chains.values():
                    obj = {"family": table.family, "table": table.name,
                           "name": chain.name, "handle": chain.handle}
                    for attr in ("type", "hook", "prio", "policy"):
                        if getattr(chain, attr) is not None:
                            obj[attr] = getattr(chain, attr)
                    items.append({"chain": obj})
                    for rule in self._rules:
                        if (rule.family, rule.table, rule.chain) != (table.family, table.name, chain.name):
                            continue
                        obj = {"family": rule.family, "table": rule.table,
                               "chain": rule.chain, "handle": rule.handle,
                               "expr": copy.deepcopy(rule.expr)}
                        if rule.comment:
                            obj["comment"] = rule.comment
                        items.append({"rule": obj})
            return {"nftables": items}, self.warning

    def _check_chain(self, family: str, table: str, chain: str, command: str) -> None:
        owner = self._tables.get((family, table))
        if owner is None or chain not in owner.chains:
            raise KernelRejection(
                f"Error: No such file or directory\n{command}",
                code=ERR_FIREWALL_ADD_FAILED, command=f"nft {command}",
            )

    def _check_statement(self, statement: str, command: str) -> None:
        if not statement.strip():
            raise KernelRejection(f"Error: syntax error, unexpected end of file\n{command}",
                                  code=ERR_FIREWALL_ADD_FAILED, command=f"nft {command}")

    def add_rule(self, family: str, table: str, chain: str,
                 statement: str, comment: str = "") -> Optional[int]:
        command = f"add rule {family} {table} {chain} {build_statement(statement, comment)}"
        with self._lock:
            self._check_chain(family, table, chain, command)
            self._check_statement(statement, command)
            handle = self._allocate()
            self._rules.append(_SimRule(family=family, table=table, chain=chain,
                                        handle=handle, expr=statement.strip(),
                                        comment=comment))
        logger.debug(f"Simulated add: {command} # handle {handle}")
        return handle

    def _find(self, family: str, table: str, chain: str, handle: int) -> Optional[int]:
        for index, rule in enumerate(self._rules):
            if (rule.family, rule.table, rule.chain, rule.handle) == (family, table, chain, handle):
                return index
        return None

    def delete_rule(self, family: str, table: str, chain: str, handle: int) -> None:
        command = f"delete rule {family} {table} {chain} handle {handle}"
        with self._lock:
            index = self._find(family, table, chain, int(handle))
            if index is None:
                raise KernelRejection(
                    f"Error: Could not process rule: No such file or directory\n{command}",
                    code=ERR_FIREWALL_DELETE_FAILED, command=f"nft {command}",
                )
            del self._rules[index]
        logger.debug(f"Simulated delete: {command}")

    def replace_rule(self, family: str, table: str, chain: str, handle: int,
                     statement: str, comment: str = "") -> Optional[int]:
        if not self.supports_transactions:
            return super().replace_rule(family, table, chain, handle, statement, comment)

        command = f"delete rule {family} {table} {chain} handle {handle}"
        with self._lock:
            index = self._find(family, table, chain, int(handle))
            if index is None:
                raise KernelRejection(
                    f"Error: Could not process rule: No such file or directory\n{command}",
                    code=ERR_FIREWALL_ADD_FAILED, command=f"nft {command}",
                )
            self._check_statement(statement, f"add rule {family} {table} {chain} {statement}")
            new_handle = self._allocate()
            del self._rules[index]
            self._rules.append(_SimRule(family=family, table=table, chain=chain,
                                        handle=new_handle, expr=statement.strip(),
                                        comment=comment))
        return new_handle
