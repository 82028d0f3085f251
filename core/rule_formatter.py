#!/usr/bin/env python3
"""
NFTGATE Rule Formatter
======================

Turns decoded nftables expressions into the statement text an operator
edits, e.g. ``tcp dport "8080" accept``.

Two layers:
- format_expression: one Expression -> one fragment (pure, never raises)
- render_rule: a rule's stored representation -> one display line, with a
  verbatim fallback when nothing in it could be formatted

Author: Team NFTGATE
"""

import json
from typing import Any, Iterable, Union

from loguru import logger

from .expressions import (
    Conntrack, Counter, CtOperand, Expression, Goto, Jump, Limit, Log,
    Masquerade, Match, MetaKey, Nat, Payload, Prefix, Range, RawOperand,
    Scalar, ValueList, ValueSet, Verdict, decode_expressions, decode_right,
    raw_json,
)


def format_left(left) -> str:
    """Format the selector side of a match."""
    if isinstance(left, MetaKey):
        return left.key
    if isinstance(left, Payload):
        return f"{left.protocol} {left.field}"
    if isinstance(left, CtOperand):
        if left.key:
            return f"ct {left.key}"
        if left.state:
            return "ct state"
        if left.status:
            return "ct status"
        return "ct"
    return raw_json(left.raw if isinstance(left, RawOperand) else left)


def _plain(value: Any) -> str:
    """Unquoted text for one member of an array or set."""
    if isinstance(value, dict):
        if "prefix" in value or "range" in value or "set" in value:
            return format_right(decode_right(value))
        return raw_json(value)
    if isinstance(value, list):
        return raw_json(value)
    return str(value)


def format_right(right) -> str:
    """Format the value side of a match."""
    if isinstance(right, Scalar):
        return f'"{right.value}"'
    if isinstance(right, ValueList):
        return ",".join(_plain(v) for v in right.values)
    if isinstance(right, Prefix):
        return f"{right.addr}/{right.length}"
    if isinstance(right, Range):
        return f"{_plain(right.low)}-{_plain(right.high)}"
    if isinstance(right, ValueSet):
        return "{ " + ", ".join(_plain(v) for v in right.values) + " }"
    return raw_json(right.raw if isinstance(right, RawOperand) else right)


def format_expression(expr: Expression) -> str:
    """
    Format a single expression.

    Args:
        expr: Decoded expression

    Returns:
        Display fragment; empty string for Unknown (and anything unexpected)
    """
    try:
        if isinstance(expr, Match):
            op = "" if expr.op == "==" else f" {expr.op}"
            return f"{format_left(expr.left)}{op} {format_right(expr.right)}"

        if isinstance(expr, Verdict):
            return expr.kind.value

        if isinstance(expr, Jump):
            return f"jump {expr.target}"
        if isinstance(expr, Goto):
            return f"goto {expr.target}"

        if isinstance(expr, Masquerade):
            return "masquerade"

        if isinstance(expr, Nat):
            addr = format_right(expr.addr) if expr.addr is not None else ""
            port = f":{expr.port}" if expr.port is not None else ""
            return f"{expr.kind.value} to {addr}{port}"

        # Informational only
        if isinstance(expr, Counter):
            return f"counter packets {expr.packets or 0} bytes {expr.bytes or 0}"
        if isinstance(expr, Limit):
            return f"limit rate {expr.rate}/{expr.per}"
        if isinstance(expr, Conntrack):
            if expr.key:
                return f"ct {expr.key}"
            if expr.state:
                return f"ct state {_plain_many(expr.state)}"
            if expr.status:
                return f"ct status {_plain_many(expr.status)}"
            return ""
        if isinstance(expr, Log):
            return f'log prefix "{expr.prefix}"' if expr.prefix else "log"

    except (TypeError, ValueError, AttributeError) as e:
        logger.debug(f"Could not format {expr!r}: {e}")
        return ""

    # Unknown and anything else contributes nothing
    return ""


def _plain_many(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(_plain(v) for v in value)
    return _plain(value)


def format_expressions(expressions: Iterable[Expression]) -> str:
    """Join the non-empty fragments of an expression list with single spaces."""
    fragments = [format_expression(e) for e in expressions]
    return " ".join(f for f in fragments if f).strip()


def render_rule(raw: Union[str, list, None]) -> str:
    """
    Produce the display line for a rule's stored representation.

    Plain statement text passes through untouched. A JSON expression list
    is decoded and formatted; if that yields nothing (or the text is not
    valid JSON) the untouched raw text is shown instead, so a rule with
    non-empty raw text never displays blank.

    Args:
        raw: Stored representation (JSON text, plain text or parsed list)

    Returns:
        Display string
    """
    if raw is None:
        return ""

    if isinstance(raw, list):
        nodes, raw_text = raw, json.dumps(raw)
    else:
        raw_text = raw
        if not raw_text.strip().startswith("["):
            return raw_text
        try:
            nodes = json.loads(raw_text)
        except ValueError:
            return raw_text
        if not isinstance(nodes, list):
            return raw_text

    rendered = format_expressions(decode_expressions(nodes))
    return rendered or raw_text
