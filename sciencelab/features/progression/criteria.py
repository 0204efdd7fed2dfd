"""Badge eligibility rules.

Badge rows store their rule as a loose JSON object, e.g.::

    {"experiment_type": "ohms law", "experiments_completed": 3, "min_accuracy": 85}
    {"subject": "chemistry", "min_accuracy": 90}
    {"xp_threshold": 5000}

``parse_criteria`` turns one such object into a tuple of typed criterion
blocks when the catalog is loaded. A badge is earned when *any* of its
blocks holds, so a row carrying fields of several shapes produces several
independent blocks.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union

from sciencelab.common.utils import safe_float


@dataclass(frozen=True)
class CountByType:
    """N completed runs of one experiment type, optionally at a minimum score."""

    experiments_completed: int
    experiment_type: str
    min_accuracy: Optional[float] = None


@dataclass(frozen=True)
class CountBySubject:
    experiments_completed: int
    subject: str


@dataclass(frozen=True)
class CountOverall:
    experiments_completed: int


@dataclass(frozen=True)
class TypeCompletion:
    """Completed at least one run of the experiment type."""

    experiment_type: str


@dataclass(frozen=True)
class AccuracyThreshold:
    accuracy_threshold: float
    experiment_type: Optional[str] = None


@dataclass(frozen=True)
class XpThreshold:
    xp_threshold: float


@dataclass(frozen=True)
class SubjectMastery:
    """Every run ever started in the subject is completed at min_accuracy or better."""

    subject: str
    min_accuracy: float


CriterionBlock = Union[
    CountByType,
    CountBySubject,
    CountOverall,
    TypeCompletion,
    AccuracyThreshold,
    XpThreshold,
    SubjectMastery,
]


def _text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _count(value: Any) -> Optional[int]:
    number = safe_float(value)
    if number is None:
        return None
    # "at least 2.5 runs" needs 3
    return math.ceil(number)


def parse_criteria(raw: Any) -> Tuple[CriterionBlock, ...]:
    """Return the criterion blocks described by a raw ``criteria`` value.

    Unknown keys are ignored; a value that is not a JSON object (or a string
    holding one) yields no blocks, which leaves the badge permanently unearned.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return ()
    if not isinstance(raw, Mapping):
        return ()

    count = _count(raw.get("experiments_completed"))
    experiment_type = _text(raw.get("experiment_type"))
    subject = _text(raw.get("subject"))
    min_accuracy = safe_float(raw.get("min_accuracy"))
    accuracy_threshold = safe_float(raw.get("accuracy_threshold"))
    xp_threshold = safe_float(raw.get("xp_threshold"))

    blocks: list[CriterionBlock] = []

    if count is not None:
        if experiment_type:
            blocks.append(CountByType(count, experiment_type, min_accuracy))
        elif subject:
            blocks.append(CountBySubject(count, subject))
        else:
            blocks.append(CountOverall(count))

    # A zero threshold or count counts as absent for completion-only badges
    if experiment_type and (raw.get("completed") is True or (not accuracy_threshold and not count)):
        blocks.append(TypeCompletion(experiment_type))

    if accuracy_threshold is not None:
        blocks.append(AccuracyThreshold(accuracy_threshold, experiment_type))

    if xp_threshold is not None:
        blocks.append(XpThreshold(xp_threshold))

    if subject and min_accuracy is not None:
        blocks.append(SubjectMastery(subject, min_accuracy))

    return tuple(blocks)


__all__ = [
    "AccuracyThreshold",
    "CountBySubject",
    "CountByType",
    "CountOverall",
    "CriterionBlock",
    "SubjectMastery",
    "TypeCompletion",
    "XpThreshold",
    "parse_criteria",
]
