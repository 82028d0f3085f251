#!/usr/bin/env python3
"""
NFTGATE Expression Model
========================

Tagged union for one nftables rule expression, decoded once from the
``nft -j list ruleset`` JSON at fetch time.

Every shape the decoder does not recognise becomes ``Unknown`` (or a
``RawOperand`` inside a match), so nothing downstream ever probes raw
dictionaries or raises on a new kernel construct.

Author: Team NFTGATE
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Union

from loguru import logger


# =============================================================================
# Match operands - left hand side
# =============================================================================

@dataclass
class MetaKey:
    """Meta selector such as iifname, oifname, l4proto, mark."""
    key: str


@dataclass
class Payload:
    """Packet header field, e.g. tcp dport or ip saddr."""
    protocol: str
    field: str


@dataclass
class CtOperand:
    """Connection tracking selector (ct state, ct status, ct <key>)."""
    key: Optional[str] = None
    state: bool = False
    status: bool = False


# =============================================================================
# Match operands - right hand side
# =============================================================================

@dataclass
class Scalar:
    value: Union[str, int, float]


@dataclass
class ValueList:
    """Bare JSON array, e.g. ct state ["established", "related"]."""
    values: List[Any]


@dataclass
class Prefix:
    addr: str
    length: int


@dataclass
class Range:
    low: Any
    high: Any


@dataclass
class ValueSet:
    """Anonymous set literal."""
    values: List[Any]


@dataclass
class RawOperand:
    """Operand shape we do not model; kept verbatim for display."""
    raw: Any


Left = Union[MetaKey, Payload, CtOperand, RawOperand]
Right = Union[Scalar, ValueList, Prefix, Range, ValueSet, RawOperand]


# =============================================================================
# Expressions
# =============================================================================

class VerdictKind(Enum):
    """Terminal verdicts a rule can carry."""
    ACCEPT = "accept"
    DROP = "drop"
    REJECT = "reject"
    RETURN = "return"


class NatKind(Enum):
    DNAT = "dnat"
    SNAT = "snat"


@dataclass
class Match:
    left: Left
    op: str
    right: Right


@dataclass
class Verdict:
    kind: VerdictKind


@dataclass
class Jump:
    target: str


@dataclass
class Goto:
    target: str


@dataclass
class Nat:
    kind: NatKind
    addr: Optional[Right] = None
    port: Optional[Any] = None


@dataclass
class Masquerade:
    pass


@dataclass
class Counter:
    packets: int = 0
    bytes: int = 0


@dataclass
class Limit:
    rate: Any
    per: str


@dataclass
class Conntrack:
    """ct statement outside a match (key, state or status)."""
    key: Optional[str] = None
    state: Optional[Any] = None
    status: Optional[Any] = None


@dataclass
class Log:
    prefix: Optional[str] = None


@dataclass
class Unknown:
    raw: Any


Expression = Union[Match, Verdict, Jump, Goto, Nat, Masquerade, Counter,
                   Limit, Conntrack, Log, Unknown]


# =============================================================================
# Decoding
# =============================================================================

_VERDICT_KEYS = {kind.value: kind for kind in VerdictKind}
_NAT_KEYS = {kind.value: kind for kind in NatKind}


def decode_left(node: Any) -> Left:
    """Decode the left hand side of a match."""
    if isinstance(node, dict):
        meta = node.get("meta")
        if isinstance(meta, dict) and meta.get("key"):
            return MetaKey(key=str(meta["key"]))

        payload = node.get("payload")
        if isinstance(payload, dict) and "protocol" in payload and "field" in payload:
            return Payload(protocol=str(payload["protocol"]),
                           field=str(payload["field"]))

        ct = node.get("ct")
        if isinstance(ct, dict):
            if ct.get("key"):
                return CtOperand(key=str(ct["key"]))
            if "state" in ct:
                return CtOperand(state=True)
            if "status" in ct:
                return CtOperand(status=True)

    return RawOperand(raw=node)


def decode_right(node: Any) -> Right:
    """Decode the right hand side of a match (also used for NAT addresses)."""
    if isinstance(node, bool):
        return RawOperand(raw=node)
    if isinstance(node, (str, int, float)):
        return Scalar(value=node)
    if isinstance(node, list):
        return ValueList(values=node)
    if isinstance(node, dict):
        prefix = node.get("prefix")
        if isinstance(prefix, dict) and "addr" in prefix and "len" in prefix:
            return Prefix(addr=str(prefix["addr"]), length=prefix["len"])

        bounds = node.get("range")
        if isinstance(bounds, list) and len(bounds) == 2:
            return Range(low=bounds[0], high=bounds[1])

        members = node.get("set")
        if isinstance(members, list):
            return ValueSet(values=members)
        if isinstance(members, (str, int, float)) and not isinstance(members, bool):
            return ValueSet(values=[members])

    return RawOperand(raw=node)


def decode_expression(node: Any) -> Expression:
    """
    Decode one element of a rule's ``expr`` array.

    Args:
        node: Parsed JSON object, normally a single-key dict

    Returns:
        The matching Expression variant, or Unknown for anything else
    """
    if not isinstance(node, dict) or len(node) != 1:
        logger.debug(f"Unrecognised expression shape: {node!r}")
        return Unknown(raw=node)

    (tag, body), = node.items()

    if tag == "match" and isinstance(body, dict) and "left" in body and "right" in body:
        return Match(
            left=decode_left(body["left"]),
            op=str(body.get("op", "==")),
            right=decode_right(body["right"]),
        )

    if tag in _VERDICT_KEYS:
        return Verdict(kind=_VERDICT_KEYS[tag])

    if tag in ("jump", "goto") and isinstance(body, dict) and body.get("target"):
        target = str(body["target"])
        return Jump(target=target) if tag == "jump" else Goto(target=target)

    if tag == "masquerade":
        return Masquerade()

    if tag in _NAT_KEYS and isinstance(body, dict):
        addr = body.get("addr")
        return Nat(
            kind=_NAT_KEYS[tag],
            addr=decode_right(addr) if addr not in (None, "") else None,
            port=body.get("port") if body.get("port") not in (None, "") else None,
        )

    if tag == "counter" and isinstance(body, dict):
        return Counter(packets=body.get("packets") or 0,
                       bytes=body.get("bytes") or 0)

    if tag == "limit" and isinstance(body, dict) and "rate" in body:
        return Limit(rate=body["rate"], per=str(body.get("per", "second")))

    if tag == "ct" and isinstance(body, dict):
        if body.get("key"):
            return Conntrack(key=str(body["key"]))
        if body.get("state"):
            return Conntrack(state=body["state"])
        if body.get("status"):
            return Conntrack(status=body["status"])

    if tag == "log":
        if body is None:
            return Log()
        if isinstance(body, dict):
            prefix = body.get("prefix")
            return Log(prefix=str(prefix) if prefix else None)

    logger.debug(f"Unrecognised expression '{tag}': {body!r}")
    return Unknown(raw=node)


def decode_expressions(nodes: Any) -> List[Expression]:
    """Decode a full ``expr`` array. Non-list input decodes to nothing."""
    if not isinstance(nodes, list):
        return []
    return [decode_expression(node) for node in nodes]


def raw_json(value: Any) -> str:
    """Compact JSON text for a node kept verbatim."""
    try:
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError):
        return str(value)
