"""Filter expressions for exports.

Textual form::

    field=value1,value2&other=!value3

Clauses are ANDed.  Within a clause a field lists either accepted values or,
with a ``!`` prefix, rejected values; mixing both on one field is rejected as
:class:`~JvmMeta.errors.FilterSyntaxError`.  Repeating a field merges its terms.

Matching rules:

- scalar field, positive terms: the record value is one of the terms
- scalar field, negated terms: the record value is none of the terms
- ``features`` (a set): positive terms need at least one shared tag, negated
  terms need none
- an absent optional value (``None``) never satisfies positive terms and always
  satisfies negated ones
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .errors import FilterSyntaxError
from .models import ENUM_FIELDS, EXPORT_FIELDS, CanonicalRecord

__all__ = ["FilterTerm", "FilterExpression", "parse_filter", "SET_FIELDS"]

SET_FIELDS = frozenset({"features"})
# Values that are stored lower-case, so filter values are folded to match.
_CASE_FOLDED_FIELDS = frozenset(ENUM_FIELDS) | SET_FIELDS | {"file_type"}


@dataclass(frozen=True, order=True)
class FilterTerm:
    negated: bool
    value: str

    def __str__(self) -> str:
        return f"!{self.value}" if self.negated else self.value


def _record_values(record: CanonicalRecord, field: str) -> Optional[FrozenSet[str]]:
    value = record.field_value(field)
    if value is None:
        return None
    if isinstance(value, list):
        return frozenset(str(item) for item in value)
    return frozenset({str(value)})


class FilterExpression:
    """Per-field set of ``(negated, value)`` terms; an empty expression matches everything."""

    def __init__(self, clauses: Optional[Mapping[str, Iterable[FilterTerm]]] = None) -> None:
        self._clauses: Dict[str, FrozenSet[FilterTerm]] = {}
        for field, terms in (clauses or {}).items():
            self._add(field, terms)

    def _add(self, field: str, terms: Iterable[FilterTerm], *, expression: Optional[str] = None) -> None:
        if field not in EXPORT_FIELDS:
            raise FilterSyntaxError(f"unknown filter field '{field}'", expression=expression)
        if field in _CASE_FOLDED_FIELDS:
            terms = [FilterTerm(term.negated, term.value.lower()) for term in terms]
        merged = self._clauses.get(field, frozenset()) | frozenset(terms)
        if not merged:
            return
        polarities = {term.negated for term in merged}
        if len(polarities) > 1:
            raise FilterSyntaxError(
                f"field '{field}' mixes included and excluded values", expression=expression
            )
        self._clauses[field] = merged

    @classmethod
    def parse(cls, text: Optional[str]) -> "FilterExpression":
        """Parse the textual form; ``None`` or blank text is the empty filter."""

        expression = cls()
        if text is None or not text.strip():
            return expression
        for clause in text.split("&"):
            clause = clause.strip()
            if not clause:
                raise FilterSyntaxError("empty clause", expression=text)
            field, sep, raw_values = clause.partition("=")
            field = field.strip()
            if not sep:
                raise FilterSyntaxError(f"clause '{clause}' is missing '='", expression=text)
            if not field:
                raise FilterSyntaxError(f"clause '{clause}' has no field name", expression=text)
            terms: List[FilterTerm] = []
            for raw in raw_values.split(","):
                token = raw.strip()
                negated = token.startswith("!")
                value = token[1:].strip() if negated else token
                if not value:
                    raise FilterSyntaxError(
                        f"clause '{clause}' contains an empty value", expression=text
                    )
                terms.append(FilterTerm(negated, value))
            expression._add(field, terms, expression=text)
        return expression

    @property
    def clauses(self) -> Mapping[str, FrozenSet[FilterTerm]]:
        return dict(self._clauses)

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(name for name in EXPORT_FIELDS if name in self._clauses)

    def is_empty(self) -> bool:
        return not self._clauses

    def terms(self, field: str) -> FrozenSet[FilterTerm]:
        return self._clauses.get(field, frozenset())

    def values(self, field: str) -> FrozenSet[str]:
        return frozenset(term.value for term in self.terms(field))

    def is_negated(self, field: str) -> bool:
        return any(term.negated for term in self.terms(field))

    def matches(self, record: CanonicalRecord) -> bool:
        """Return ``True`` when ``record`` satisfies every clause."""

        for field, terms in self._clauses.items():
            wanted = frozenset(term.value for term in terms)
            negated = next(iter(terms)).negated
            present = _record_values(record, field)
            if present is None:
                if not negated:
                    return False
                continue
            overlaps = bool(present & wanted)
            if overlaps == negated:
                return False
        return True

    def filter(self, records: Iterable[CanonicalRecord]) -> List[CanonicalRecord]:
        return [record for record in records if self.matches(record)]

    def to_sql(self) -> Tuple[str, List[object]]:
        """Render scalar clauses as a parameterised ``WHERE`` fragment.

        Set-valued fields are left to :meth:`matches`; the fragment narrows the
        scan and is never the only check applied.
        """

        conditions: List[str] = []
        params: List[object] = []
        for field in self.fields:
            if field in SET_FIELDS:
                continue
            values = sorted(self.values(field))
            placeholders = ", ".join("?" for _ in values)
            column = f'CAST("{field}" AS VARCHAR)' if field == "size" else f'"{field}"'
            if self.is_negated(field):
                conditions.append(f"({column} IS NULL OR {column} NOT IN ({placeholders}))")
            else:
                conditions.append(f"{column} IN ({placeholders})")
            params.extend(values)
        if not conditions:
            return "", []
        return " AND ".join(conditions), params

    def __str__(self) -> str:
        return "&".join(
            f"{field}=" + ",".join(str(term) for term in sorted(self._clauses[field]))
            for field in self.fields
        )

    def __repr__(self) -> str:
        return f"FilterExpression({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FilterExpression):
            return NotImplemented
        return self._clauses == other._clauses

    def __hash__(self) -> int:
        return hash(frozenset(self._clauses.items()))


def parse_filter(text: Optional[str]) -> FilterExpression:
    return FilterExpression.parse(text)
