#!/usr/bin/env python3
"""
NFTGATE Ruleset Client
======================

Fetches a full Ruleset snapshot from the kernel collaborator on demand.

There is no cache: every call lists the kernel again, and callers are
expected to fetch after every mutation rather than patch an old snapshot.

Author: Team NFTGATE
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger

from .errors import TransportError
from .nft_kernel import KernelCollaborator
from .ruleset import Rule, Ruleset


PLACEHOLDER_WARNING = "Could not fetch NFT rules. Mock data."


def placeholder_ruleset() -> Ruleset:
    """Single loopback rule shown when the kernel cannot be listed."""
    return Ruleset.from_rules([
        Rule(family="inet", table="filter", chain="INPUT", handle=1,
             comment="Allow Localhost", raw="iifname lo accept"),
    ])


@dataclass
class RulesetSnapshot:
    """A fetched Ruleset plus how it was obtained."""
    ruleset: Ruleset
    warning: Optional[str] = None
    degraded: bool = False
    fetched_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rules": self.ruleset.to_list(),
            "count": len(self.ruleset),
            "warning": self.warning,
            "degraded": self.degraded,
            "fetched_at": self.fetched_at.isoformat(),
        }


class RulesetClient:
    """
    Lists the kernel ruleset.

    Args:
        kernel: Kernel collaborator to list from
        degrade_to_placeholder: On TransportError, return a placeholder
            snapshot flagged with a warning instead of raising
    """

    def __init__(self, kernel: KernelCollaborator, degrade_to_placeholder: bool = False):
        self.kernel = kernel
        self.degrade_to_placeholder = degrade_to_placeholder

    def fetch(self) -> RulesetSnapshot:
        """Blocking read of the live ruleset."""
        try:
            document, warning = self.kernel.list_ruleset()
        except TransportError as e:
            if not self.degrade_to_placeholder:
                raise
            logger.warning(f"Ruleset unavailable, serving placeholder: {e}")
            return RulesetSnapshot(ruleset=placeholder_ruleset(),
                                   warning=PLACEHOLDER_WARNING, degraded=True)

        try:
            ruleset = Ruleset.from_nft_json(document)
        except ValueError as e:
            raise TransportError(f"Failed to parse nft output: {e}")

        logger.debug(f"Fetched ruleset with {len(ruleset)} rules")
        return RulesetSnapshot(ruleset=ruleset, warning=warning)
