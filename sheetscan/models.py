from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

ItemKind = Literal["multiple_choice", "true_false", "open"]
ScanStatus = Literal["success", "mismatch", "incomplete", "error"]

LETTERS = "ABCDE"
TRUE_LETTER = "V"
FALSE_LETTER = "F"
OPEN_MARKER = "-"


@dataclass(frozen=True)
class Alternative:
    id: str
    text: str
    is_correct: bool = False
    order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "isCorrect": self.is_correct,
            "order": self.order,
        }


@dataclass(frozen=True)
class AssessmentItem:
    id: str
    order: int
    kind: ItemKind
    statement: str = ""
    alternatives: Tuple[Alternative, ...] = ()
    points: float = 1.0

    @property
    def is_scoreable(self) -> bool:
        return self.kind == "multiple_choice"

    def correct_alternative(self) -> Optional[Alternative]:
        return next((alt for alt in self.alternatives if alt.is_correct), None)


@dataclass(frozen=True)
class Evaluation:
    id: str
    items: Tuple[AssessmentItem, ...]
    randomize_items: bool = False
    randomize_alternatives: bool = True
    balance_answers: bool = True


@dataclass(frozen=True)
class VersionItem:
    """One item as it appears on a given row: renumbered, alternatives permuted."""

    number: int
    item: AssessmentItem
    alternatives: Tuple[Alternative, ...]

    @property
    def correct_slot(self) -> int:
        return next((i for i, alt in enumerate(self.alternatives) if alt.is_correct), -1)


@dataclass(frozen=True)
class ExamVersion:
    row_label: str
    seed: str
    items: Tuple[VersionItem, ...]

    def by_item_id(self) -> Dict[str, VersionItem]:
        return {entry.item.id: entry for entry in self.items}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row_label,
            "items": [
                {
                    "number": entry.number,
                    "itemId": entry.item.id,
                    "kind": entry.item.kind,
                    "alternatives": [alt.id for alt in entry.alternatives],
                }
                for entry in self.items
            ],
        }


@dataclass(frozen=True)
class FiducialPayload:
    evaluation_id: str
    student_id: str
    row_label: str


@dataclass(frozen=True)
class Bubble:
    question_number: int
    item_id: str
    slot: int
    x: float
    y: float
    radius: float


@dataclass(frozen=True)
class BubbleGrid:
    fiducial_size: float
    bubbles: Tuple[Bubble, ...]

    def for_item(self, item_id: str) -> List[Bubble]:
        return [bubble for bubble in self.bubbles if bubble.item_id == item_id]


@dataclass(frozen=True)
class MarkReading:
    item_id: str
    question_number: int
    # Darkest slot, or -1 when nothing was dark enough.
    slot: int
    brightness: float
    samples: Tuple[float, ...]

    @property
    def answered(self) -> bool:
        return self.slot >= 0


@dataclass(frozen=True)
class AnswerPair:
    item_id: str
    selected_alternative_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"itemId": self.item_id, "selectedAlternativeId": self.selected_alternative_id}


@dataclass(frozen=True)
class GradedResponse:
    evaluation_id: str
    student_id: str
    row_label: str
    answers: Tuple[AnswerPair, ...]
    correct_count: int = 0
    earned_points: float = 0.0
    total_points: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evaluationId": self.evaluation_id,
            "studentId": self.student_id,
            "row": self.row_label,
            "answers": [answer.to_dict() for answer in self.answers],
            "correct": self.correct_count,
            "score": self.earned_points,
            "total": self.total_points,
        }


@dataclass
class ScanAttempt:
    """Transient per-frame state, filled in as the pipeline advances."""

    status: ScanStatus = "error"
    payload: Optional[FiducialPayload] = None
    raw_payload: Optional[str] = None
    aligned: bool = False
    grid: Optional[BubbleGrid] = None
    marks: List[MarkReading] = field(default_factory=list)
    response: Optional[GradedResponse] = None
    message: str = ""
    student_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "studentId": self.payload.student_id if self.payload else None,
            "studentName": self.student_name,
            "row": self.payload.row_label if self.payload else None,
            "aligned": self.aligned,
            "marks": [
                {
                    "q": mark.question_number,
                    "slot": LETTERS[mark.slot] if 0 <= mark.slot < len(LETTERS) else "",
                    "brightness": round(mark.brightness, 2),
                }
                for mark in self.marks
            ],
            "response": self.response.to_dict() if self.response else None,
        }
