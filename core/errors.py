#!/usr/bin/env python3
"""
NFTGATE Error Taxonomy
======================

Exceptions raised by the rule engine and translated to JSON at the API
boundary.

Error codes are stable and user-facing:
- FW001: kernel rejected an add
- FW002: kernel rejected a delete
- FW003: draft failed validation
- FW004: kernel collaborator unreachable or output unusable
- FW005: edit lost the original rule (delete ok, add failed)
- GEN001: malformed request
- SYS006: command refused by the privileged executor

Author: Team NFTGATE
"""

from typing import Any, Dict, Optional


# Firewall errors
ERR_FIREWALL_ADD_FAILED = "FW001"
ERR_FIREWALL_DELETE_FAILED = "FW002"
ERR_FIREWALL_INVALID_RULE = "FW003"
ERR_FIREWALL_LIST_FAILED = "FW004"
ERR_FIREWALL_PARTIAL_MUTATION = "FW005"

# Generic / system errors
ERR_GENERIC_INVALID_REQUEST = "GEN001"
ERR_SYSTEM_COMMAND_NOT_ALLOWED = "SYS006"


class FirewallError(Exception):
    """Base class for every error the rule engine raises."""

    code = ERR_FIREWALL_LIST_FAILED
    http_status = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        # Attached by the orchestrator so the boundary can return it
        self.trace = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": False,
            "code": self.code,
            "error": self.message,
            "error_type": type(self).__name__,
        }
        if self.trace is not None:
            data["trace"] = self.trace.to_list()
        return data


class ValidationError(FirewallError):
    """Draft is incomplete; no kernel call was issued."""

    code = ERR_FIREWALL_INVALID_RULE
    http_status = 400

    def __init__(self, message: str, missing_fields=None):
        super().__init__(message)
        self.missing_fields = list(missing_fields or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["missing_fields"] = self.missing_fields
        return data


class KernelRejection(FirewallError):
    """
    The kernel collaborator answered with a non-success.

    ``kernel_message`` is the collaborator's own error text, unmodified
    (e.g. nft's "No such file or directory" for a stale handle).
    """

    code = ERR_FIREWALL_ADD_FAILED
    http_status = 422

    def __init__(self, kernel_message: str, code: Optional[str] = None,
                 command: Optional[str] = None):
        super().__init__(kernel_message, code)
        self.kernel_message = kernel_message
        self.command = command

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["kernel_message"] = self.kernel_message
        if self.command:
            data["command"] = self.command
        return data


class TransportError(FirewallError):
    """Kernel collaborator could not be reached; resulting state is unknown."""

    code = ERR_FIREWALL_LIST_FAILED
    http_status = 503


class PartialMutationError(FirewallError):
    """
    Edit deleted the original rule but could not add its replacement.

    The rule at ``lost_handle`` is gone from the kernel and nothing replaced
    it. Never retried automatically: recovery is an explicit re-submission
    after a fresh listing.
    """

    code = ERR_FIREWALL_PARTIAL_MUTATION
    http_status = 409

    def __init__(self, lost_handle: int, kernel_message: str, draft=None):
        message = (
            f"Rule handle {lost_handle} was deleted but its replacement "
            f"could not be added: {kernel_message}"
        )
        super().__init__(message)
        self.lost_handle = lost_handle
        self.kernel_message = kernel_message
        self.draft = draft

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["lost_handle"] = self.lost_handle
        data["kernel_message"] = self.kernel_message
        if self.draft is not None:
            data["draft"] = self.draft.to_dict()
        return data


class CommandNotAllowed(FirewallError):
    """Privileged executor refused to run a binary outside its allow-list."""

    code = ERR_SYSTEM_COMMAND_NOT_ALLOWED
    http_status = 403
