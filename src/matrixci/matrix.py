# matrix.py
from __future__ import annotations

import itertools
from typing import Any, Iterable, List, Mapping, Sequence

from .errors import ConfigurationError
from .model import Axis, JobSpec, MatrixSpec


def _validate_axes(axes: Sequence[Axis]) -> None:
    seen: set[str] = set()
    for ax in axes:
        if ax.name in seen:
            raise ConfigurationError(f"Duplicate matrix axis: {ax.name!r}")
        seen.add(ax.name)
        if not ax.variants:
            raise ConfigurationError(f"Matrix axis {ax.name!r} has no variants")


def _variant_matches(variant: Any, pattern: Any) -> bool:
    """
    Exclude-pattern matching for a single axis.

      - mapping pattern vs mapping variant: every pattern key must be equal
      - scalar pattern vs mapping variant: compared against variant["name"]
      - otherwise plain equality
    """
    if isinstance(pattern, Mapping):
        if not isinstance(variant, Mapping):
            return False
        return all(k in variant and variant[k] == v for k, v in pattern.items())
    if isinstance(variant, Mapping):
        return variant.get("name") == pattern
    return variant == pattern


def _excluded(values: Mapping[str, Any], patterns: Iterable[Mapping[str, Any]]) -> bool:
    return any(
        all(_variant_matches(values[name], pat) for name, pat in pattern.items())
        for pattern in patterns
    )


def expand(
    axes: Sequence[Axis],
    include: Iterable[Mapping[str, Any]] = (),
    exclude: Iterable[Mapping[str, Any]] = (),
) -> List[JobSpec]:
    """
    Expand a matrix into concrete JobSpecs.

    Order: cartesian product in declared axis order, minus excludes,
    followed by include entries verbatim. Duplicates keep the first one.
    """
    axes = list(axes)
    include = [dict(i) for i in include]
    exclude = [dict(e) for e in exclude]

    _validate_axes(axes)

    names = {ax.name for ax in axes}
    for pattern in exclude:
        if not pattern:
            raise ConfigurationError("Empty exclude pattern would remove every matrix combination")
        unknown = sorted(k for k in pattern if k not in names)
        if unknown:
            raise ConfigurationError(
                f"Exclude pattern references unknown axis {unknown}. "
                f"Known axes: {sorted(names)}"
            )

    if not axes and not include:
        raise ConfigurationError("Matrix has no axes and no include entries")

    specs: List[JobSpec] = []
    if axes:
        for combo in itertools.product(*(ax.variants for ax in axes)):
            values = {ax.name: v for ax, v in zip(axes, combo)}
            if _excluded(values, exclude):
                continue
            specs.append(JobSpec(values=values))

    for extra in include:
        specs.append(JobSpec(values=extra, included=True))

    unique: List[JobSpec] = []
    seen = set()
    for s in specs:
        if s.key in seen:
            continue
        seen.add(s.key)
        unique.append(s)
    return unique


def expand_matrix(spec: MatrixSpec) -> List[JobSpec]:
    return expand(spec.axes, spec.include, spec.exclude)
