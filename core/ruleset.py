#!/usr/bin/env python3
"""
NFTGATE Ruleset Model
=====================

Snapshot of the kernel's nftables configuration: tables, their chains and
the rules inside them, decoded from ``nft -j list ruleset``.

A Ruleset is rebuilt wholesale on every fetch. It is never patched after a
mutation and never treated as the authority on what the kernel holds.

Author: Team NFTGATE
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .expressions import Expression, decode_expressions
from .rule_formatter import render_rule


FAMILIES = ["inet", "ip", "ip6"]


@dataclass
class Chain:
    """A rule container. Hook, priority and policy are display-only."""
    family: str
    table: str
    name: str
    handle: Optional[int] = None
    type: Optional[str] = None
    hook: Optional[str] = None
    prio: Optional[int] = None
    policy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "table": self.table,
            "name": self.name,
            "handle": self.handle,
            "type": self.type,
            "hook": self.hook,
            "prio": self.prio,
            "policy": self.policy,
        }


@dataclass
class Table:
    family: str
    name: str
    handle: Optional[int] = None
    chains: List[Chain] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.family, self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "name": self.name,
            "handle": self.handle,
            "chains": [c.to_dict() for c in self.chains],
        }


@dataclass
class Rule:
    """
    One kernel rule.

    Attributes:
        family: Address family of the owning table
        table: Table name
        chain: Chain name
        handle: Kernel-assigned identity, stable until the rule is deleted
        raw: Stored representation (JSON text of ``expr`` or plain text)
        comment: Optional rule comment
        expressions: Decoded expression list (empty for plain-text rules)
    """
    family: str
    table: str
    chain: str
    handle: int
    raw: str = ""
    comment: str = ""
    expressions: List[Expression] = field(default_factory=list)

    @property
    def display(self) -> str:
        return render_rule(self.raw)

    @property
    def context(self) -> Tuple[str, str, str]:
        return (self.family, self.table, self.chain)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "table": self.table,
            "chain": self.chain,
            "handle": self.handle,
            "comment": self.comment,
            "raw": self.raw,
            "display": self.display,
        }


class Ruleset:
    """
    Ordered tables plus rules in listing order.

    Rules are indexed by (family, table, handle) for lookup only; handles
    are unique within a table, not across the whole ruleset.
    """

    def __init__(self, tables: Optional[List[Table]] = None,
                 rules: Optional[List[Rule]] = None):
        self.tables: List[Table] = list(tables or [])
        self.rules: List[Rule] = list(rules or [])
        self._index: Dict[Tuple[str, str, int], Rule] = {
            (r.family, r.table, r.handle): r for r in self.rules
        }

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    @property
    def is_empty(self) -> bool:
        return not self.rules

    @property
    def chains(self) -> List[Chain]:
        return [chain for table in self.tables for chain in table.chains]

    def handles(self) -> List[int]:
        return [r.handle for r in self.rules]

    def find_rule(self, handle: int, family: Optional[str] = None,
                  table: Optional[str] = None) -> Optional[Rule]:
        """Look a rule up by handle, optionally scoped to a table."""
        if family is not None and table is not None:
            return self._index.get((family, table, handle))
        for rule in self.rules:
            if rule.handle == handle:
                return rule
        return None

    def find_by_statement(self, statement: str) -> List[Rule]:
        """Rules whose display text equals ``statement`` (whitespace-normalised)."""
        wanted = " ".join(statement.split())
        return [r for r in self.rules if " ".join(r.display.split()) == wanted]

    def to_list(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.rules]

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    @classmethod
    def from_nft_json(cls, data: Any) -> "Ruleset":
        """
        Build a Ruleset from parsed ``nft -j list ruleset`` output.

        Args:
            data: Either the whole ``{"nftables": [...]}`` document or its list

        Returns:
            Ruleset with tables, chains and rules in listing order
        """
        items = data.get("nftables", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ValueError("nft output has no 'nftables' array")

        tables: Dict[Tuple[str, str], Table] = {}
        rules: List[Rule] = []

        def table_for(family: str, name: str) -> Table:
            key = (family, name)
            if key not in tables:
                tables[key] = Table(family=family, name=name)
            return tables[key]

        for item in items:
            if not isinstance(item, dict):
                continue

            if isinstance(item.get("table"), dict):
                obj = item["table"]
                table = table_for(str(obj.get("family", "")), str(obj.get("name", "")))
                table.handle = obj.get("handle")

            elif isinstance(item.get("chain"), dict):
                obj = item["chain"]
                table = table_for(str(obj.get("family", "")), str(obj.get("table", "")))
                table.chains.append(Chain(
                    family=table.family,
                    table=table.name,
                    name=str(obj.get("name", "")),
                    handle=obj.get("handle"),
                    type=obj.get("type"),
                    hook=obj.get("hook"),
                    prio=obj.get("prio"),
                    policy=obj.get("policy"),
                ))

            elif isinstance(item.get("rule"), dict):
                rule = _decode_rule(item["rule"])
                if rule is not None:
                    table_for(rule.family, rule.table)
                    rules.append(rule)

        logger.debug(f"Decoded ruleset: {len(tables)} tables, {len(rules)} rules")
        return cls(tables=list(tables.values()), rules=rules)

    @classmethod
    def from_rules(cls, rules: List[Rule]) -> "Ruleset":
        """Build a Ruleset from plain rules, deriving tables and chains."""
        tables: Dict[Tuple[str, str], Table] = {}
        for rule in rules:
            table = tables.setdefault((rule.family, rule.table),
                                      Table(family=rule.family, name=rule.table))
            if rule.chain not in [c.name for c in table.chains]:
                table.chains.append(Chain(family=rule.family, table=rule.table,
                                          name=rule.chain))
        return cls(tables=list(tables.values()), rules=rules)


def _decode_rule(obj: Dict[str, Any]) -> Optional[Rule]:
    handle = obj.get("handle")
    if isinstance(handle, bool) or not isinstance(handle, (int, float)):
        logger.warning(f"Skipping rule without a handle: {obj!r}")
        return None

    expr = obj.get("expr")
    if isinstance(expr, list):
        raw = json.dumps(expr)
        expressions = decode_expressions(expr)
    else:
        raw = str(expr) if expr is not None else ""
        expressions = []

    return Rule(
        family=str(obj.get("family", "")),
        table=str(obj.get("table", "")),
        chain=str(obj.get("chain", "")),
        handle=int(handle),
        raw=raw,
        comment=str(obj.get("comment") or ""),
        expressions=expressions,
    )
