"""
AST node types for metric expressions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Union


class AggFunc(str, Enum):
    SUM = "SUM"
    AVG = "AVG"
    COUNT = "COUNT"
    MIN = "MIN"
    MAX = "MAX"


class TimeFunction(str, Enum):
    YTD = "YTD"
    QTD = "QTD"
    MTD = "MTD"
    YOY = "YOY"
    MOM = "MOM"
    QOQ = "QOQ"
    PREVIOUS_PERIOD = "PreviousPeriod"
    ROLLING_AVERAGE = "RollingAverage"
    ROLLING_SUM = "RollingSum"
    CAGR = "CAGR"


AGG_FUNCS: dict[str, AggFunc] = {f.value: f for f in AggFunc}
TIME_FUNCS: dict[str, TimeFunction] = {f.value.upper(): f for f in TimeFunction}

# Scalar functions a formula may call; anything else is rejected by the parser.
SCALAR_FUNCS = frozenset({
    "ABS", "CEIL", "CEILING", "COALESCE", "EXP", "FLOOR", "GREATEST",
    "LEAST", "LN", "NULLIF", "POWER", "ROUND", "SIGN", "SQRT",
})


@dataclass(frozen=True)
class NumberLiteral:
    text: str


@dataclass(frozen=True)
class StringLiteral:
    value: str


@dataclass(frozen=True)
class Identifier:
    name: str


@dataclass(frozen=True)
class Star:
    """The ``*`` in ``COUNT(*)``."""


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Aggregate:
    func: AggFunc
    argument: "Node"
    distinct: bool = False


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: tuple["Node", ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TimeIntelCall:
    func: TimeFunction
    args: tuple["Node", ...]
    args_text: str


Node = Union[
    NumberLiteral, StringLiteral, Identifier, Star,
    UnaryOp, BinaryOp, Aggregate, FunctionCall, TimeIntelCall,
]


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal over *node* and all of its descendants."""
    yield node
    if isinstance(node, UnaryOp):
        yield from walk(node.operand)
    elif isinstance(node, BinaryOp):
        yield from walk(node.left)
        yield from walk(node.right)
    elif isinstance(node, Aggregate):
        yield from walk(node.argument)
    elif isinstance(node, (FunctionCall, TimeIntelCall)):
        for arg in node.args:
            yield from walk(arg)


def contains_aggregate(node: Node) -> bool:
    return any(isinstance(n, Aggregate) for n in walk(node))
