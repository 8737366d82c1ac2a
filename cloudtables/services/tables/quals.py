"""
Quals and Provider Filters

A qual is one caller predicate (column, operator, value). Before listing, the
engine splits the quals of a scan into the part that can be pushed into the
provider request (a ProviderFilter) and the remainder, which is evaluated
against every resolved row before it is emitted.

Pushdown fails closed: any qual combination a filter key cannot express
natively stays in the remainder, so the worst case is fetching more rows,
never dropping one.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from cloudtables.services.tables.definitions import ColumnSpec, Combine, Pushdown

EQ = "="
NE = "<>"
LT = "<"
LE = "<="
GT = ">"
GE = ">="
LIKE = "like"

RANGE_OPERATORS = frozenset({LT, LE, GT, GE})
SUPPORTED_OPERATORS = frozenset({EQ, NE, LT, LE, GT, GE, LIKE})
_ALIASES = {"==": EQ, "!=": NE, "in": EQ, "eq": EQ, "ne": NE, "lt": LT, "le": LE, "gt": GT, "ge": GE}


def normalize_operator(op: str) -> str:
    op = op.strip().lower()
    op = _ALIASES.get(op, op)
    if op not in SUPPORTED_OPERATORS:
        raise ValueError(f"Unsupported operator: {op}")
    return op


def _as_values(value: Any) -> tuple[Any, ...]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return (value,)


def _like_regex(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def _comparable(left: Any, right: Any) -> tuple[Any, Any]:
    if isinstance(left, datetime) and isinstance(right, datetime):
        if (left.tzinfo is None) != (right.tzinfo is None):
            left = left.replace(tzinfo=None)
            right = right.replace(tzinfo=None)
    elif isinstance(left, (dict, list)) and isinstance(right, str):
        left = json.dumps(left, sort_keys=True, default=str)
    return left, right


@dataclass(frozen=True)
class Qual:
    column: str
    operator: str
    value: Any

    @classmethod
    def of(cls, column: str, operator: str, value: Any) -> "Qual":
        return cls(column, normalize_operator(operator), value)

    @property
    def values(self) -> tuple[Any, ...]:
        return _as_values(self.value)

    @property
    def is_list(self) -> bool:
        return isinstance(self.value, (list, tuple, set, frozenset))

    def matches(self, actual: Any) -> bool:
        """SQL-ish evaluation: comparisons against null are false."""
        if actual is None:
            return False
        if self.operator == EQ:
            return any(self._equal(actual, v) for v in self.values)
        if self.operator == NE:
            return not any(self._equal(actual, v) for v in self.values)
        if self.operator == LIKE:
            return bool(_like_regex(str(self.value)).match(str(actual)))
        try:
            cmp = self._compare(actual, self.value)
        except TypeError:
            return False
        if self.operator == LT:
            return cmp < 0
        if self.operator == LE:
            return cmp <= 0
        if self.operator == GT:
            return cmp > 0
        return cmp >= 0

    @staticmethod
    def _equal(actual: Any, expected: Any) -> bool:
        # string_array columns match on membership
        if isinstance(actual, list) and not isinstance(expected, list) and expected in actual:
            return True
        left, right = _comparable(actual, expected)
        return left == right or (type(left) is not type(right) and str(left) == str(right))

    @staticmethod
    def _compare(actual: Any, expected: Any) -> int:
        left, right = _comparable(actual, expected)
        try:
            if left == right:
                return 0
            return -1 if left < right else 1
        except TypeError:
            if str(left) == str(right):
                return 0
            raise


class QualSet:
    """The immutable set of quals a scan was invoked with."""

    def __init__(self, quals: Iterable[Qual] = ()):
        self._quals: tuple[Qual, ...] = tuple(quals)

    @classmethod
    def parse(cls, raw: Optional[Iterable[Any]]) -> "QualSet":
        """Accepts Qual objects, (column, op, value) triples or {"column","operator","value"} dicts."""
        quals = []
        for item in raw or ():
            if isinstance(item, Qual):
                quals.append(item)
            elif isinstance(item, Mapping):
                quals.append(Qual.of(item["column"], item.get("operator", EQ), item.get("value")))
            else:
                column, op, value = item
                quals.append(Qual.of(column, op, value))
        return cls(quals)

    def __iter__(self) -> Iterator[Qual]:
        return iter(self._quals)

    def __len__(self) -> int:
        return len(self._quals)

    def __bool__(self) -> bool:
        return bool(self._quals)

    @property
    def columns(self) -> set[str]:
        return {q.column for q in self._quals}

    def for_column(self, column: str) -> list[Qual]:
        return [q for q in self._quals if q.column == column]

    def equals_values(self, column: str) -> Optional[tuple[Any, ...]]:
        """Values allowed by the `=` quals on `column`, or None if it has none."""
        allowed: Optional[list[Any]] = None
        for q in self.for_column(column):
            if q.operator != EQ:
                continue
            values = list(q.values)
            allowed = values if allowed is None else [v for v in allowed if v in values]
        return None if allowed is None else tuple(allowed)

    def equals(self, column: str) -> Any:
        """The single scalar an `=` qual pins `column` to, else None."""
        values = self.equals_values(column)
        if not values or len(set(map(repr, values))) != 1:
            return None
        return values[0]

    def has_equals(self, column: str) -> bool:
        return self.equals(column) is not None


@dataclass(frozen=True)
class FilterClause:
    """
    Predicates pushed for one filter key, in conjunctive normal form:
    `terms` is AND-ed, the values inside each term are OR-ed.
    """

    key: str
    operator: str
    terms: tuple[tuple[Any, ...], ...]

    @property
    def values(self) -> list[Any]:
        return [v for term in self.terms for v in term]


@dataclass
class ProviderFilter:
    clauses: list[FilterClause] = field(default_factory=list)
    consumed: list[Qual] = field(default_factory=list)
    remaining: list[Qual] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.clauses)

    def clause(self, key: str, operator: str = EQ) -> Optional[FilterClause]:
        for c in self.clauses:
            if c.key == key and c.operator == operator:
                return c
        return None

    def values(self, key: str) -> list[Any]:
        c = self.clause(key)
        return c.values if c else []

    def value(self, key: str) -> Any:
        c = self.clause(key)
        if c is None or len(c.terms) != 1 or len(c.terms[0]) != 1:
            return None
        return c.terms[0][0]

    def range(self, key: str) -> dict[str, Any]:
        """{operator: value} of the range clauses pushed for `key`."""
        return {
            c.operator: c.terms[0][0]
            for c in self.clauses
            if c.key == key and c.operator in RANGE_OPERATORS
        }

    def as_filters(self, keys: Optional[Sequence[str]] = None) -> list[dict[str, Any]]:
        """EC2/RDS style `Filters=[{"Name": ..., "Values": [...]}]`."""
        filters = []
        for c in self.clauses:
            if c.operator != EQ or (keys is not None and c.key not in keys):
                continue
            if len(c.terms) != 1:
                continue
            filters.append({"Name": c.key, "Values": [str(v) for v in c.terms[0]]})
        return filters

    def as_filter_pattern(self, keys: Optional[Sequence[str]] = None) -> Optional[str]:
        """CloudWatch Logs JSON filter pattern, e.g. `{ ($.eventName = "X") && ... }`."""
        groups = []
        for c in self.clauses:
            if c.operator not in (EQ, NE) or (keys is not None and c.key not in keys):
                continue
            for term in c.terms:
                parts = [f"($.{c.key} {'=' if c.operator == EQ else '!='} {json.dumps(str(v))})" for v in term]
                groups.append(parts[0] if len(parts) == 1 else "(" + " || ".join(parts) + ")")
        if not groups:
            return None
        return "{ " + " && ".join(groups) + " }"


def _dedupe_terms(terms: list[tuple[Any, ...]]) -> list[tuple[Any, ...]]:
    seen: list[tuple[Any, ...]] = []
    for term in terms:
        if term not in seen:
            seen.append(term)
    return seen


def _expressible(combine: Combine, terms: list[tuple[Any, ...]]) -> bool:
    if not terms or any(len(t) == 0 for t in terms):
        return False
    if combine == Combine.NONE:
        return len(terms) == 1 and len(terms[0]) == 1
    if combine == Combine.OR:
        return len(terms) == 1
    if combine == Combine.AND:
        return all(len(t) == 1 for t in terms)
    return True


def extract_provider_filter(quals: QualSet, columns: Iterable[ColumnSpec]) -> ProviderFilter:
    """
    Split `quals` into a ProviderFilter and the remaining quals.

    Quals on one filter key are pushed all together or not at all.
    """
    pushable: dict[str, Pushdown] = {c.name: c.pushdown for c in columns if c.pushdown}
    groups: dict[str, list[tuple[Qual, Pushdown]]] = {}
    result = ProviderFilter()

    for q in quals:
        pd = pushable.get(q.column)
        if pd is None or q.operator not in pd.operators or (set(pd.unless) & quals.columns):
            result.remaining.append(q)
            continue
        groups.setdefault(pd.filter_key, []).append((q, pd))

    for key, items in groups.items():
        group_quals = [q for q, _ in items]
        modes = {pd.combine for _, pd in items}
        if len(modes) != 1:
            result.remaining.extend(group_quals)
            continue
        combine = modes.pop()

        clauses: list[FilterClause] = []
        ok = True

        eq_terms = []
        ne_terms = []
        for q, pd in items:
            values = tuple(pd.convert(v) if pd.convert else v for v in q.values)
            if q.operator == EQ:
                eq_terms.append(values)
            elif q.operator == NE:
                # a != list means "none of", i.e. one AND-ed term per value
                ne_terms.extend((v,) for v in values)

        if eq_terms:
            terms = _dedupe_terms(eq_terms)
            ok = ok and _expressible(combine, terms)
            clauses.append(FilterClause(key, EQ, tuple(terms)))
        if ne_terms:
            terms = _dedupe_terms(ne_terms)
            ok = ok and combine in (Combine.AND, Combine.ANY)
            clauses.append(FilterClause(key, NE, tuple(terms)))

        ranges: dict[str, Any] = {}
        for q, pd in items:
            if q.operator not in RANGE_OPERATORS:
                continue
            if q.operator in ranges or q.is_list:
                ok = False
                break
            ranges[q.operator] = pd.convert(q.value) if pd.convert else q.value
        for op, value in ranges.items():
            clauses.append(FilterClause(key, op, ((value,),)))

        if any(q.operator == LIKE for q in group_quals):
            ok = False

        if ok:
            result.clauses.extend(clauses)
            result.consumed.extend(group_quals)
        else:
            result.remaining.extend(group_quals)

    return result


def row_matches(row: Mapping[str, Any], quals: Iterable[Qual]) -> bool:
    return all(q.matches(row.get(q.column)) for q in quals)
