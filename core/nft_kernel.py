#!/usr/bin/env python3
"""
NFTGATE Kernel Collaborator
===========================

Access to the live nftables ruleset through the ``nft`` binary.

Operations:
- list_ruleset: ``nft -j list ruleset``
- add_rule: ``nft --echo --handle add rule <family> <table> <chain> <statement>``
- delete_rule: ``nft delete rule <family> <table> <chain> handle <n>``
- replace_rule: one ``nft -f`` batch holding the delete and the add, checked
  first with ``nft -c -f`` so a bad statement never touches the kernel

Errors from nft are passed up verbatim inside KernelRejection.

Author: Team NFTGATE
"""

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from loguru import logger

from .errors import (
    ERR_FIREWALL_ADD_FAILED, ERR_FIREWALL_DELETE_FAILED, KernelRejection,
    TransportError,
)
from .priv_exec import PrivilegedExecutor


HANDLE_PATTERN = re.compile(r"#\s*handle\s+(\d+)")


class KernelCollaborator(ABC):
    """Interface every kernel backend implements."""

    # Backends that can commit delete+add as one transaction set this
    supports_transactions = False

    @abstractmethod
    def list_ruleset(self) -> Tuple[Dict[str, Any], Optional[str]]:
        """Return the parsed ruleset document and an optional warning."""

    @abstractmethod
    def add_rule(self, family: str, table: str, chain: str,
                 statement: str, comment: str = "") -> Optional[int]:
        """Append a rule; return the kernel-assigned handle when known."""

    @abstractmethod
    def delete_rule(self, family: str, table: str, chain: str, handle: int) -> None:
        """Delete a rule by handle; raise KernelRejection on failure."""

    def replace_rule(self, family: str, table: str, chain: str, handle: int,
                     statement: str, comment: str = "") -> Optional[int]:
        raise NotImplementedError(f"{type(self).__name__} has no transaction support")


def quote_comment(comment: str) -> str:
    """nft comment literal; embedded double quotes are not representable."""
    return '"' + comment.replace('"', "'").replace("\n", " ") + '"'


def build_statement(statement: str, comment: str = "") -> str:
    statement = statement.strip()
    if comment:
        statement = f"{statement} comment {quote_comment(comment)}"
    return statement


def parse_echoed_handle(output: str) -> Optional[int]:
    """Pull the last ``# handle N`` out of nft --echo --handle output."""
    matches = HANDLE_PATTERN.findall(output or "")
    return int(matches[-1]) if matches else None


class NftKernel(KernelCollaborator):
    """
    Kernel collaborator backed by the nft command line tool.

    Args:
        executor: PrivilegedExecutor used for every invocation
        nft_binary: Name of the binary (must be allow-listed)
    """

    supports_transactions = True

    def __init__(self, executor: Optional[PrivilegedExecutor] = None,
                 nft_binary: str = "nft"):
        self.executor = executor or PrivilegedExecutor()
        self.nft_binary = nft_binary
        logger.info("NftKernel initialized")

    def _nft(self, *args: str):
        return self.executor.run(self.nft_binary, list(args))

    def list_ruleset(self) -> Tuple[Dict[str, Any], Optional[str]]:
        result = self._nft("-j", "list", "ruleset")
        if not result.ok:
            raise TransportError(f"nft list ruleset failed: {result.message}")

        try:
            document = json.loads(result.stdout) if result.stdout.strip() else {"nftables": []}
        except ValueError as e:
            raise TransportError(f"Failed to parse nft output: {e}")

        warning = result.stderr.strip() or None
        if warning:
            logger.warning(f"nft reported: {warning}")
        return document, warning

    def add_rule(self, family: str, table: str, chain: str,
                 statement: str, comment: str = "") -> Optional[int]:
        full = build_statement(statement, comment)
        args = ["--echo", "--handle", "add", "rule", family, table, chain, full]
        result = self._nft(*args)
        if not result.ok:
            raise KernelRejection(result.message, code=ERR_FIREWALL_ADD_FAILED,
                                  command=f"nft {' '.join(args)}")

        handle = parse_echoed_handle(result.stdout)
        if handle is None:
            logger.warning(f"nft did not echo a handle for: {full}")
        return handle

    def delete_rule(self, family: str, table: str, chain: str, handle: int) -> None:
        args = ["delete", "rule", family, table, chain, "handle", str(handle)]
        result = self._nft(*args)
        if not result.ok:
            raise KernelRejection(result.message, code=ERR_FIREWALL_DELETE_FAILED,
                                  command=f"nft {' '.join(args)}")

    def replace_rule(self, family: str, table: str, chain: str, handle: int,
                     statement: str, comment: str = "") -> Optional[int]:
        """
        Delete and re-add in a single nft transaction.

        The batch is validated with ``nft -c -f`` first; either both
        commands commit or neither does.
        """
        batch = (
            f"delete rule {family} {table} {chain} handle {handle}\n"
            f"add rule {family} {table} {chain} {build_statement(statement, comment)}\n"
        )

        fd, path = tempfile.mkstemp(prefix="nftgate-", suffix=".nft")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(batch)

            check = self._nft("-c", "-f", path)
            if not check.ok:
                raise KernelRejection(check.message, code=ERR_FIREWALL_ADD_FAILED,
                                      command=f"nft -c -f {path}")

            result = self._nft("--echo", "--handle", "-f", path)
            if not result.ok:
                raise KernelRejection(result.message, code=ERR_FIREWALL_ADD_FAILED,
                                      command=f"nft -f {path}")
        finally:
            try:
                os.remove(path)
            except OSError as e:
                logger.warning(f"Could not remove batch file {path}: {e}")

        return parse_echoed_handle(result.stdout)
