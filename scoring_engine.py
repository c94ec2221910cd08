"""
Product Comparison — Normalization & Scoring Engine

Responsibilities:
  1. Spec definition resolution (built-in price always first, never duplicated)
  2. Attribute merging (base price / shared product specs / variant option specs)
  3. Numeric value extraction for scalar and compound specs
  4. Per-spec min/max ranges over the comparison set
  5. Orientation-aware normalization and weighted scoring
  6. Stable ranking by score

Everything here is pure and synchronous: no I/O, no shared state. Ranges and
scores are relative to the candidates passed to a single call.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np

from models import (
    Candidate, ComparisonResult, Orientation, ScoredCandidate,
    SpecDefinition, VariantRecord,
)

logger = logging.getLogger(__name__)


# ============================================================
# Spec Registry
# ============================================================

PRICE_KEY = 'price'

PRICE_SPEC = SpecDefinition(
    key=PRICE_KEY,
    display_name='가격',
    unit='원',
    orientation=Orientation.NEGATIVE,
    icon_key='price',
)


def resolve_spec_definitions(
    stored: Iterable[Mapping[str, Any]],
    price_spec: SpecDefinition = PRICE_SPEC,
) -> list[SpecDefinition]:
    """
    Resolve a category's comparable specs.

    Any stored entry keyed 'price' (case-insensitive) is dropped and the
    built-in price definition is put first, so exactly one price spec exists.
    """
    resolved = [price_spec]
    for record in stored or []:
        spec = SpecDefinition.from_record(record)
        if spec is None:
            logger.warning("Skipping category spec without a key: %r", record)
            continue
        if spec.key.lower() == PRICE_KEY:
            continue
        resolved.append(spec)
    return resolved


# ============================================================
# Spec Merger
# ============================================================

def merge_specs(
    price: Any,
    shared: Optional[Mapping[str, Any]] = None,
    options: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """
    Flatten one variant's attributes.

    Variant options override shared product specs on key collision. The base
    price is applied last and always wins over a 'price' key in either map.
    """
    merged: dict[str, Any] = {}
    merged.update(shared or {})
    merged.update(options or {})
    merged[PRICE_KEY] = price
    return merged


def build_candidate(variant: VariantRecord) -> Candidate:
    """Turn a stored variant row into an immutable comparison candidate."""
    return Candidate(
        id=variant.id,
        display_name=variant.product_name or '',
        variant_label=variant.variant_name,
        brand=variant.maker_name or 'Unknown',
        image_url=variant.image_url,
        price=variant.price,
        attributes=merge_specs(variant.price, variant.common_specs, variant.option_specs),
    )


# ============================================================
# Value Extractor
# ============================================================

# Compound specs: key → components multiplied together
COMPOUND_SPECS: dict[str, tuple[str, ...]] = {
    'screen_resolution': ('width', 'height'),
}


def to_number(val: Any) -> float:
    """Coerce a raw value to a finite float; anything unusable becomes 0."""
    if val is None or isinstance(val, (dict, list, tuple, set)):
        return 0.0
    if isinstance(val, str):
        val = val.strip()
        if not val:
            return 0.0
    try:
        num = float(val)
    except (TypeError, ValueError):
        return 0.0
    return num if math.isfinite(num) else 0.0


def get_numeric_value(key: str, attributes: Mapping[str, Any]) -> float:
    """Single comparable number for a spec of one candidate."""
    val = attributes.get(key)
    components = COMPOUND_SPECS.get(key)
    if components and isinstance(val, Mapping):
        product = 1.0
        for part in components:
            product *= to_number(val.get(part))
        return product if math.isfinite(product) else 0.0
    return to_number(val)


# ============================================================
# Range Calculator
# ============================================================

@dataclass(frozen=True)
class SpecRange:
    min: float = 0.0
    max: float = 0.0


# Used when a weighted key has no resolved spec, so no range was computed
UNKNOWN_SPEC_RANGE = SpecRange(min=0.0, max=1.0)


def compute_ranges(
    spec_definitions: Sequence[SpecDefinition],
    attribute_maps: Sequence[Mapping[str, Any]],
) -> dict[str, SpecRange]:
    """Min/max of every spec across exactly this candidate set."""
    keys = [s.key for s in spec_definitions]
    if not keys:
        return {}
    if not attribute_maps:
        return {k: SpecRange() for k in keys}

    matrix = np.array(
        [[get_numeric_value(k, attrs) for k in keys] for attrs in attribute_maps],
        dtype=float,
    )
    mins = matrix.min(axis=0)
    maxs = matrix.max(axis=0)
    return {
        k: SpecRange(min=float(lo), max=float(hi))
        for k, lo, hi in zip(keys, mins, maxs)
    }


# ============================================================
# Scoring Engine
# ============================================================

# Below this a lower-is-better value counts as free, i.e. best possible
NEGATIVE_EPSILON = 0.00001


def normalize_value(
    value: float,
    spec_range: SpecRange,
    orientation: Orientation,
) -> float:
    """
    Map a raw value to [0, 1] relative to the comparison set.

    A spec with no spread (max == min) cannot tell candidates apart and
    yields 1 for everyone.
    """
    if spec_range.max == spec_range.min:
        normalized = 1.0
    elif orientation == Orientation.POSITIVE:
        normalized = value / spec_range.max if spec_range.max > 0 else 0.0
    elif value > NEGATIVE_EPSILON:
        normalized = spec_range.min / value
    else:
        normalized = 1.0
    return min(max(normalized, 0.0), 1.0)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def score_candidate(
    attributes: Mapping[str, Any],
    weights: Mapping[str, float],
    spec_index: Mapping[str, SpecDefinition],
    ranges: Mapping[str, SpecRange],
) -> int:
    """
    Weighted average of normalized spec values, as a 0..100 integer.

    Keys with weight 0 (or absent) are skipped entirely and do not count in
    the denominator. A weighted key with no spec definition is treated as
    higher-is-better.
    """
    total_score = 0.0
    total_weight = 0.0

    for key, raw_weight in weights.items():
        weight = to_number(raw_weight)
        if weight <= 0:
            continue

        spec = spec_index.get(key)
        orientation = spec.orientation if spec else Orientation.POSITIVE
        spec_range = ranges.get(key, UNKNOWN_SPEC_RANGE)

        value = get_numeric_value(key, attributes)
        total_score += normalize_value(value, spec_range, orientation) * weight
        total_weight += weight

    if total_weight <= 0:
        return 0
    return min(max(round_half_up(total_score / total_weight * 100), 0), 100)


def score_candidates(
    candidates: Sequence[Candidate],
    spec_definitions: Sequence[SpecDefinition],
    weights: Mapping[str, float],
) -> list[ScoredCandidate]:
    """Score every candidate against ranges computed over the whole set."""
    ranges = compute_ranges(spec_definitions, [c.attributes for c in candidates])
    spec_index = {s.key: s for s in spec_definitions}

    scored = []
    for c in candidates:
        score = score_candidate(c.attributes, weights, spec_index, ranges)
        scored.append(ScoredCandidate(**c.model_dump(), score=score))
    return scored


# ============================================================
# Ranker
# ============================================================

def rank_candidates(
    scored: Iterable[ScoredCandidate],
    spec_definitions: Sequence[SpecDefinition],
) -> ComparisonResult:
    """Sort by score descending; ties keep their input order."""
    ranked = sorted(scored, key=lambda s: s.score, reverse=True)
    return ComparisonResult(
        ranked_data=ranked,
        spec_definitions=list(spec_definitions),
    )


def compare(
    candidates: Sequence[Candidate],
    stored_specs: Iterable[Mapping[str, Any]],
    weights: Mapping[str, float],
) -> ComparisonResult:
    """Full pipeline: resolve specs → score → rank."""
    spec_definitions = resolve_spec_definitions(stored_specs)
    scored = score_candidates(candidates, spec_definitions, weights)
    return rank_candidates(scored, spec_definitions)
