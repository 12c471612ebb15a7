"""
Grade definitions for school grading models.

A grading model is a per-school map of grade symbol to an inclusive
``[min, max]`` score range, for example ``{"A": [70, 100], "B": [60, 69], ...}``.
When a school has no model, or a score falls outside every band of the model,
the fixed default ladder below applies.
"""

import math
from dataclasses import dataclass
from numbers import Real
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from academic_registry.errors import BadRequestError

GradingModelMap = Mapping[str, Sequence[float]]


@dataclass
class MarkRange:
    """Represents a mark range with minimum and maximum values."""

    min: float
    max: float

    def contains(self, score: float) -> bool:
        return self.min <= score <= self.max


@dataclass
class GradeBand:
    grade: str
    marks_range: MarkRange


# Lowest score for each grade, highest first
DEFAULT_GRADE_LADDER: List[Tuple[float, str]] = [
    (70, "A"),
    (60, "B"),
    (50, "C"),
    (45, "D"),
    (40, "E"),
]
DEFAULT_FAIL_GRADE = "F"

MIN_SCORE = 0
MAX_SCORE = 100


def get_default_grade(score: float) -> str:
    """Grade a score with the fixed default ladder."""
    for minimum, grade in DEFAULT_GRADE_LADDER:
        if score >= minimum:
            return grade
    return DEFAULT_FAIL_GRADE


def calculate_grade(score: float, model: Optional[GradingModelMap] = None) -> str:
    """
    Map a numeric score to a letter grade.

    Args:
        score: The score to grade, typically between 0 and 100
        model: Optional school grading model

    Returns:
        The first grade of the model whose inclusive range contains the score,
        otherwise the default ladder grade
    """
    if model:
        for grade, score_range in model.items():
            if not isinstance(score_range, (list, tuple)) or len(score_range) != 2:
                continue
            minimum, maximum = score_range
            if minimum <= score <= maximum:
                return grade

    return get_default_grade(score)


def _is_number(value) -> bool:
    return (
        isinstance(value, Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def get_grade_bands(model: GradingModelMap) -> List[GradeBand]:
    """Return the bands of a model sorted by their lower bound."""
    bands = [
        GradeBand(grade=grade, marks_range=MarkRange(min=r[0], max=r[1]))
        for grade, r in model.items()
    ]
    bands.sort(key=lambda b: b.marks_range.min)
    return bands


def validate_grading_model(model: GradingModelMap) -> Dict[str, List[float]]:
    """
    Check that a grading model covers 0-100 with no gaps or overlaps.

    Bands are inclusive at both ends, so adjacent integer bands such as
    ``[60, 69]`` and ``[70, 100]`` do not overlap. The one-mark step between
    them is only accepted when both bounds are whole marks; a fractional
    boundary such as ``[0, 38.5]`` then ``[39.5, 100]`` leaves scores uncovered.

    Returns:
        The model normalized to ``{grade: [min, max]}``

    Raises:
        BadRequestError: If any band is malformed, out of range, overlapping,
            or leaves part of 0-100 uncovered
    """
    if not isinstance(model, Mapping) or not model:
        raise BadRequestError("Grading model must be a non-empty mapping of grades")

    normalized: Dict[str, List[float]] = {}
    for grade, score_range in model.items():
        if not isinstance(grade, str) or not grade.strip():
            raise BadRequestError("Grade names must be non-empty strings")
        if (
            not isinstance(score_range, (list, tuple))
            or len(score_range) != 2
            or not all(_is_number(v) for v in score_range)
        ):
            raise BadRequestError(
                f"Grade {grade} must have a [min, max] range of two numbers"
            )
        minimum, maximum = score_range
        if minimum < MIN_SCORE or maximum > MAX_SCORE or minimum > maximum:
            raise BadRequestError(
                f"Grade {grade} range [{minimum}, {maximum}] is out of range. "
                f"Bands must satisfy {MIN_SCORE} <= min <= max <= {MAX_SCORE}"
            )
        normalized[grade.strip()] = [minimum, maximum]

    bands = get_grade_bands(normalized)

    if bands[0].marks_range.min != MIN_SCORE:
        raise BadRequestError(
            f"Grading model must start at {MIN_SCORE}, lowest band {bands[0].grade} "
            f"starts at {bands[0].marks_range.min}"
        )
    if bands[-1].marks_range.max != MAX_SCORE:
        raise BadRequestError(
            f"Grading model must end at {MAX_SCORE}, highest band {bands[-1].grade} "
            f"ends at {bands[-1].marks_range.max}"
        )

    for previous, current in zip(bands, bands[1:]):
        if current.marks_range.min <= previous.marks_range.max:
            raise BadRequestError(
                f"Grades {previous.grade} and {current.grade} have overlapping ranges"
            )
        allowed_step = (
            1
            if float(previous.marks_range.max).is_integer()
            and float(current.marks_range.min).is_integer()
            else 0
        )
        if current.marks_range.min - previous.marks_range.max > allowed_step:
            raise BadRequestError(
                f"Gap between grades {previous.grade} and {current.grade}: scores "
                f"between {previous.marks_range.max} and {current.marks_range.min} "
                f"are not covered"
            )

    return normalized
