"""
Core data model for the Rete network.

Facts are immutable (identifier, attribute, value) triples. Tokens are
immutable ordered sequences of facts, one per condition joined so far.
Condition and join tests describe how single facts are filtered and how
a new fact is matched against an existing partial match.
"""

import operator as _operator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Union

from rete.errors import ConfigurationError


class FactField(Enum):
    """Position inside a fact triple."""
    IDENTIFIER = "identifier"
    ATTRIBUTE = "attribute"
    VALUE = "value"

    @classmethod
    def parse(cls, raw: Union["FactField", str]) -> "FactField":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(raw)
        except ValueError:
            raise ConfigurationError(
                f"Unknown fact field {raw!r} (expected one of: "
                f"{', '.join(f.value for f in cls)})"
            ) from None


_OPERATOR_FUNCS: dict[str, Callable[[Any, Any], bool]] = {
    "==": _operator.eq,
    "!=": _operator.ne,
    "<": _operator.lt,
    "<=": _operator.le,
    ">": _operator.gt,
    ">=": _operator.ge,
}


class Operator(Enum):
    """Comparison used by condition and join tests."""
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    @classmethod
    def parse(cls, raw: Union["Operator", str]) -> "Operator":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(raw)
        except ValueError:
            raise ConfigurationError(
                f"Unsupported comparison operator {raw!r} (expected one of: "
                f"{', '.join(op.value for op in cls)})"
            ) from None

    def apply(self, lhs: Any, rhs: Any) -> bool:
        """Compare two field values. Operands that cannot be ordered do not match."""
        try:
            return bool(_OPERATOR_FUNCS[self.value](lhs, rhs))
        except TypeError:
            return False


class DuplicatePolicy(Enum):
    """What a memory does when it receives something it already holds."""
    IDEMPOTENT = "idempotent"   # Store once, forward once
    CUMULATIVE = "cumulative"   # Store and forward every arrival

    @classmethod
    def parse(cls, raw: Union["DuplicatePolicy", str]) -> "DuplicatePolicy":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ConfigurationError(f"Unknown duplicate policy {raw!r}") from None


def _hashable(value: Any) -> bool:
    try:
        hash(value)
    except TypeError:
        return False
    return True


@dataclass(frozen=True)
class Fact:
    """One datum in working memory."""
    identifier: Any
    attribute: Any
    value: Any

    def __post_init__(self):
        for part in (self.identifier, self.attribute, self.value):
            if isinstance(part, (list, tuple, dict, set, frozenset)) or not _hashable(part):
                raise ConfigurationError(
                    f"Fact fields must be scalar values, got {part!r} in "
                    f"({self.identifier!r}, {self.attribute!r}, {self.value!r})"
                )

    def get(self, fact_field: FactField) -> Any:
        return getattr(self, fact_field.value)

    def to_list(self) -> list:
        return [self.identifier, self.attribute, self.value]

    @classmethod
    def coerce(cls, raw: Union["Fact", tuple, list]) -> "Fact":
        """Accept a Fact or a plain 3-item sequence."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, (tuple, list)) and len(raw) == 3:
            return cls(*raw)
        raise ConfigurationError(
            f"Expected a fact or an (identifier, attribute, value) triple, got {raw!r}"
        )

    def __str__(self) -> str:
        return f"({self.identifier} {self.attribute} {self.value})"


@dataclass(frozen=True)
class Token:
    """An ordered, immutable partial match.

    Index 0 holds the fact matched by the first condition of the rule.
    """
    facts: tuple = ()

    @classmethod
    def of(cls, fact: Fact) -> "Token":
        return cls((fact,))

    def extend(self, fact: Fact) -> "Token":
        """Return a new token with ``fact`` appended; ``self`` is unchanged."""
        return Token(self.facts + (fact,))

    def __getitem__(self, index: int) -> Fact:
        return self.facts[index]

    def __len__(self) -> int:
        return len(self.facts)

    def __iter__(self) -> Iterator[Fact]:
        return iter(self.facts)

    def __str__(self) -> str:
        return "[" + ", ".join(str(f) for f in self.facts) + "]"


@dataclass(frozen=True)
class Variable:
    """Named placeholder used when documenting a rule, e.g. ``<x>``.

    Matching never consults variables; bindings are expressed with
    explicit join tests.
    """
    name: str

    def __str__(self) -> str:
        return f"<{self.name}>"


@dataclass(frozen=True)
class ConditionTest:
    """Single-field filter: ``fact[field] <operator> value``."""
    field: FactField
    operator: Operator
    value: Any

    def __post_init__(self):
        object.__setattr__(self, "field", FactField.parse(self.field))
        object.__setattr__(self, "operator", Operator.parse(self.operator))
        if isinstance(self.value, Variable):
            raise ConfigurationError(
                f"Condition on {self.field.value} compares against variable {self.value}; "
                "express bindings with join tests instead"
            )

    @classmethod
    def coerce(cls, raw: Union["ConditionTest", tuple, list]) -> "ConditionTest":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, (tuple, list)) and len(raw) == 3:
            return cls(*raw)
        raise ConfigurationError(f"Malformed condition test: {raw!r}")

    def matches(self, fact: Fact) -> bool:
        return self.operator.apply(fact.get(self.field), self.value)

    def __str__(self) -> str:
        return f"{self.field.value} {self.operator.value} {self.value}"


@dataclass(frozen=True)
class JoinTest:
    """Binding check between a new fact and an existing token.

    Evaluates ``operator(fact[fact_field], token[token_index][token_field])``.
    """
    fact_field: FactField
    operator: Operator
    token_index: int
    token_field: FactField = FactField.VALUE

    def __post_init__(self):
        object.__setattr__(self, "fact_field", FactField.parse(self.fact_field))
        object.__setattr__(self, "operator", Operator.parse(self.operator))
        object.__setattr__(self, "token_field", FactField.parse(self.token_field))
        if isinstance(self.token_index, bool) or not isinstance(self.token_index, int):
            raise ConfigurationError(f"Join test token index must be an int, got {self.token_index!r}")
        if self.token_index < 0:
            raise ConfigurationError(f"Join test token index must be >= 0, got {self.token_index}")

    @classmethod
    def coerce(cls, raw: Union["JoinTest", tuple, list]) -> "JoinTest":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, (tuple, list)) and len(raw) == 4:
            return cls(*raw)
        raise ConfigurationError(f"Malformed join test: {raw!r}")

    def evaluate(self, fact: Fact, token: Token) -> bool:
        lhs = fact.get(self.fact_field)
        rhs = token[self.token_index].get(self.token_field)
        return self.operator.apply(lhs, rhs)

    def __str__(self) -> str:
        return (
            f"fact[{self.fact_field.value}] {self.operator.value} "
            f"token[{self.token_index}][{self.token_field.value}]"
        )
