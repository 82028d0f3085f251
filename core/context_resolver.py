#!/usr/bin/env python3
"""
NFTGATE Context Resolver
========================

Picks a starting (family, table, chain) for a new rule and the choices the
editor offers, from the current Ruleset.

A freshly provisioned box gets the conventional inet/filter/INPUT; a
customised one surfaces its own tables and chains.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List

from .ruleset import FAMILIES, Ruleset


DEFAULT_FAMILY = "inet"
DEFAULT_TABLE = "filter"
DEFAULT_CHAIN = "INPUT"

BASELINE_TABLES = ["filter", "nat", "mangle"]
BASELINE_CHAINS = ["INPUT", "OUTPUT", "FORWARD", "PREROUTING", "POSTROUTING"]


@dataclass
class RuleContext:
    family: str
    table: str
    chain: str

    def as_tuple(self):
        return (self.family, self.table, self.chain)

    def to_dict(self) -> Dict[str, str]:
        return {"family": self.family, "table": self.table, "chain": self.chain}


def resolve_default_context(ruleset: Ruleset) -> RuleContext:
    """
    Choose the context a new Draft starts from.

    1. the first rule whose chain name contains "INPUT"
    2. otherwise the first rule in listing order
    3. otherwise inet / filter / INPUT
    """
    for rule in ruleset.rules:
        if "INPUT" in rule.chain:
            return RuleContext(*rule.context)

    if ruleset.rules:
        return RuleContext(*ruleset.rules[0].context)

    return RuleContext(DEFAULT_FAMILY, DEFAULT_TABLE, DEFAULT_CHAIN)


def _union(baseline: Iterable[str], observed: Iterable[str]) -> List[str]:
    return sorted({*baseline, *(name for name in observed if name)})


def available_choices(ruleset: Ruleset) -> Dict[str, List[str]]:
    """Baseline families/tables/chains merged with everything observed."""
    return {
        "families": _union(FAMILIES, [t.family for t in ruleset.tables]
                           + [r.family for r in ruleset.rules]),
        "tables": _union(BASELINE_TABLES, [t.name for t in ruleset.tables]
                         + [r.table for r in ruleset.rules]),
        "chains": _union(BASELINE_CHAINS, [c.name for c in ruleset.chains]
                         + [r.chain for r in ruleset.rules]),
    }
