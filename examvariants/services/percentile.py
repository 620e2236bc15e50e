"""
Percentile-band selection over a ranked set of students.

Works on any record exposing ``student_id``, ``percentage``, ``total_score``
and ``variant_code`` (scored uploads and analysis responses both do).
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from examvariants.core.errors import PreconditionError


@dataclass(frozen=True)
class PercentileRange:
    lower: float = 0.0
    upper: float = 100.0

    def __post_init__(self):
        if not (0 <= self.lower <= self.upper <= 100):
            raise PreconditionError(
                f"Invalid percentile range [{self.lower}, {self.upper}]: need 0 <= from <= to <= 100")

    @property
    def is_full(self) -> bool:
        return self.lower == 0 and self.upper == 100

    def label(self) -> str:
        if self.is_full:
            return "All Students"
        if self.upper == 100:
            return f"Top {self.upper - self.lower:g}%"
        if self.lower == 0:
            return f"Bottom {self.upper:g}%"
        return f"{self.lower:g}th-{self.upper:g}th Percentile"


@dataclass
class RankedStudent:
    rank: int
    student_id: str
    score: float
    percentage: float
    variant_code: Optional[str]


@dataclass
class FilteredStudents:
    range: PercentileRange
    total_students: int
    students: List[RankedStudent] = field(default_factory=list)

    @property
    def average_percentage(self) -> Optional[float]:
        if not self.students:
            return None
        return sum(s.percentage for s in self.students) / len(self.students)

    @property
    def highest_percentage(self) -> Optional[float]:
        return max((s.percentage for s in self.students), default=None)

    @property
    def lowest_percentage(self) -> Optional[float]:
        return min((s.percentage for s in self.students), default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.range.label(),
            "from": self.range.lower,
            "to": self.range.upper,
            "totalStudents": self.total_students,
            "filteredStudents": len(self.students),
            "averagePercentage": self.average_percentage,
            "highestPercentage": self.highest_percentage,
            "lowestPercentage": self.lowest_percentage,
        }


def rank(records: Sequence[Any]) -> List[Any]:
    """Highest percentage first; ties broken by student id."""
    return sorted(records, key=lambda r: (-r.percentage, str(r.student_id)))


def percentile_slice(records: Sequence[Any], percentile: Optional[PercentileRange] = None) -> List[Any]:
    ranked = rank(records)
    n = len(ranked)
    if n == 0 or percentile is None or percentile.is_full:
        return ranked
    start = math.floor((100 - percentile.upper) / 100 * n)
    end = math.floor((100 - percentile.lower) / 100 * n)
    start = max(0, min(start, n - 1))
    end = max(0, min(end, n - 1))
    return ranked[start:end + 1]


def apply_percentile_filter(records: Sequence[Any], percentile: Optional[PercentileRange] = None) -> FilteredStudents:
    percentile = percentile or PercentileRange()
    ranked = rank(records)
    positions = {id(r): i for i, r in enumerate(ranked, start=1)}
    selected = percentile_slice(ranked, percentile)
    return FilteredStudents(
        range=percentile,
        total_students=len(ranked),
        students=[RankedStudent(rank=positions[id(r)], student_id=str(r.student_id), score=float(r.total_score),
                                percentage=float(r.percentage), variant_code=r.variant_code)
                  for r in selected],
    )
