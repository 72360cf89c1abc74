"""Export engine producing partitioned JSON documents for the static API.

An export is a filter, an ordered list of partition dimensions and an optional
field projection.  Each combination of dimension values becomes one document,
``<d1>/<d2>/.../<dN>.json``, holding a JSON array of matching records.  Every
combination produces a document, even when no record matches it.

Input is validated before storage is touched:

- filters are parsed into :class:`~JvmMeta.filters.FilterExpression`
  (:class:`~JvmMeta.errors.FilterSyntaxError` on malformed text);
- dimension names and values must belong to the closed enumerations
  (:class:`~JvmMeta.errors.ConfigurationError` otherwise);
- projected field names must be export fields.

The gateway is then queried once with the filter pushed down and every
dimension restricted to its requested values; grouping happens in memory.
"""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .database import PersistenceGateway
from .errors import ConfigurationError
from .filters import FilterExpression
from .models import ENUM_FIELDS, EXPORT_FIELDS, CanonicalRecord

__all__ = [
    "ExportResult",
    "PartitionSpec",
    "RELEASE_TYPE_PARTITIONS",
    "VENDOR_PARTITIONS",
    "export",
    "resolve_projection",
]

logger = logging.getLogger(__name__)

VENDOR_PARTITIONS: Tuple[str, ...] = ("vendor", "os", "architecture")
RELEASE_TYPE_PARTITIONS: Tuple[str, ...] = ("release_type", "os", "architecture")

GroupKey = Tuple[str, ...]


@dataclass(frozen=True)
class PartitionSpec:
    """Ordered partition dimensions with optional explicit values per dimension.

    Dimensions without values take every distinct value currently stored.
    """

    dimensions: Tuple[str, ...]
    values: Mapping[str, Sequence[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "dimensions", tuple(self.dimensions))
        if not self.dimensions:
            raise ConfigurationError("at least one partition dimension is required")
        if len(set(self.dimensions)) != len(self.dimensions):
            raise ConfigurationError(f"duplicate partition dimension in {self.dimensions}")
        for dimension in self.dimensions:
            if dimension not in ENUM_FIELDS:
                raise ConfigurationError(
                    f"cannot partition by '{dimension}'; choose from {', '.join(sorted(ENUM_FIELDS))}"
                )
        unknown = set(self.values) - set(self.dimensions)
        if unknown:
            raise ConfigurationError(f"values given for unknown dimension(s): {sorted(unknown)}")
        object.__setattr__(
            self,
            "values",
            {
                dimension: _validated_values(dimension, values)
                for dimension, values in self.values.items()
                if values
            },
        )

    def resolve(self, gateway: PersistenceGateway) -> Dict[str, List[str]]:
        """Return the value list of every dimension, filling gaps from storage."""

        resolved: Dict[str, List[str]] = {}
        for dimension in self.dimensions:
            explicit = self.values.get(dimension)
            resolved[dimension] = list(explicit) if explicit else gateway.distinct(dimension)
        return resolved


def _validated_values(dimension: str, values: Iterable[str]) -> List[str]:
    enum_cls = ENUM_FIELDS[dimension]
    allowed = {member.value for member in enum_cls}
    result: List[str] = []
    for raw in values:
        value = str(raw).strip().lower()
        if value not in allowed:
            raise ConfigurationError(
                f"unsupported {dimension} '{raw}'; expected one of {', '.join(sorted(allowed))}"
            )
        if value not in result:
            result.append(value)
    return result


def resolve_projection(
    include: Optional[Iterable[str]] = None, exclude: Optional[Iterable[str]] = None
) -> Tuple[str, ...]:
    """Return the exported fields in canonical order.

    ``include`` narrows the output to the named fields (all export fields when
    empty); ``exclude`` then removes fields.

    >>> resolve_projection(["version", "url"])
    ('url', 'version')
    >>> "size" in resolve_projection(exclude=["size"])
    False
    """

    include_set = {name.strip() for name in include or () if name.strip()}
    exclude_set = {name.strip() for name in exclude or () if name.strip()}
    unknown = (include_set | exclude_set) - set(EXPORT_FIELDS)
    if unknown:
        raise ConfigurationError(
            f"unknown field(s) {', '.join(sorted(unknown))}; "
            f"expected any of {', '.join(EXPORT_FIELDS)}"
        )
    wanted = include_set or set(EXPORT_FIELDS)
    selected = tuple(name for name in EXPORT_FIELDS if name in wanted and name not in exclude_set)
    if not selected:
        raise ConfigurationError("projection excludes every field")
    return selected


@dataclass
class ExportResult:
    """Grouped export output.

    Attributes:
        dimensions: Partition dimensions, outermost first.
        groups: Projected records per value combination, in cartesian order.
        pretty: Indent documents for humans instead of emitting compact JSON.
    """

    dimensions: Tuple[str, ...]
    groups: Dict[GroupKey, List[Dict[str, object]]]
    pretty: bool = False

    @property
    def total(self) -> int:
        return sum(len(records) for records in self.groups.values())

    def render(self, records: List[Dict[str, object]]) -> str:
        if self.pretty:
            return json.dumps(records, indent=2, ensure_ascii=False)
        return json.dumps(records, separators=(",", ":"), ensure_ascii=False)

    def documents(self) -> Iterator[Tuple[PurePosixPath, str]]:
        """Yield ``(relative_path, json_text)`` for every group."""

        for key, records in self.groups.items():
            path = PurePosixPath(*key[:-1], f"{key[-1]}.json")
            yield path, self.render(records)

    def write(self, output_dir: Union[str, Path]) -> List[Path]:
        """Write every document below ``output_dir`` and return the written paths."""

        root = Path(output_dir)
        written: List[Path] = []
        for relative, text in self.documents():
            target = root.joinpath(*relative.parts)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
            written.append(target)
        logger.info(
            "wrote %d export documents (%d records) to %s",
            len(written),
            self.total,
            root,
            extra={"stage": "export"},
        )
        return written


def _coerce_filter(predicate: Union[FilterExpression, str, None]) -> FilterExpression:
    if predicate is None:
        return FilterExpression()
    if isinstance(predicate, FilterExpression):
        return predicate
    return FilterExpression.parse(predicate)


def _group_key(record: CanonicalRecord, dimensions: Sequence[str]) -> GroupKey:
    return tuple(str(record.field_value(dimension)) for dimension in dimensions)


def export(
    gateway: PersistenceGateway,
    predicate: Union[FilterExpression, str, None],
    partitions: Union[PartitionSpec, Sequence[str]],
    projection: Optional[Iterable[str]] = None,
    pretty: bool = False,
) -> ExportResult:
    """Query ``gateway`` once and split matching records into partition groups.

    Args:
        gateway: Record source.
        predicate: Filter expression or its textual form.
        partitions: Partition spec, or bare dimension names.
        projection: Fields to publish; ``None`` publishes every export field.
        pretty: Indent the rendered JSON.

    Raises:
        FilterSyntaxError: malformed filter text.
        ConfigurationError: unknown dimension, dimension value or field.
    """

    expression = _coerce_filter(predicate)
    spec = partitions if isinstance(partitions, PartitionSpec) else PartitionSpec(tuple(partitions))
    fields_ = resolve_projection(projection) if projection is not None else EXPORT_FIELDS

    values = spec.resolve(gateway)
    groups: Dict[GroupKey, List[Dict[str, object]]] = {
        key: [] for key in itertools.product(*(values[d] for d in spec.dimensions))
    }
    if not groups:
        return ExportResult(spec.dimensions, groups, pretty)

    records = gateway.query(expression, restrict=values)
    for record in records:
        bucket = groups.get(_group_key(record, spec.dimensions))
        if bucket is not None:
            bucket.append(record.to_dict(fields_))

    logger.info(
        "exported %d records into %d groups",
        sum(len(items) for items in groups.values()),
        len(groups),
        extra={"stage": "export"},
    )
    return ExportResult(spec.dimensions, groups, pretty)
