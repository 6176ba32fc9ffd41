from __future__ import annotations

from typing import Dict, Optional, Tuple

import cv2
import numpy as np
import pytest

from sheetscan.geometry import FiducialCorners, SheetGeometry, locate_bubbles
from sheetscan.models import Alternative, AssessmentItem, Evaluation, ExamVersion


def build_evaluation(
    *,
    evaluation_id: str = "eval-1",
    mc_items: int = 2,
    tf_items: int = 1,
    open_items: int = 0,
    alternatives: int = 4,
    randomize_items: bool = False,
    randomize_alternatives: bool = True,
    balance_answers: bool = True,
) -> Evaluation:
    """Deterministic synthetic evaluation: multiple choice first, then true/false, then open."""

    items = []
    order = 1
    for i in range(mc_items):
        items.append(
            AssessmentItem(
                id=f"mc{i}",
                order=order,
                kind="multiple_choice",
                statement=f"Question {order}",
                alternatives=tuple(
                    Alternative(
                        id=f"mc{i}-alt{j}",
                        text=f"Option {j}",
                        is_correct=(j == i % alternatives),
                        order=j,
                    )
                    for j in range(alternatives)
                ),
            )
        )
        order += 1
    for i in range(tf_items):
        items.append(
            AssessmentItem(
                id=f"tf{i}",
                order=order,
                kind="true_false",
                statement=f"Statement {order}",
                alternatives=(
                    Alternative(id=f"tf{i}-v", text="Verdadero", is_correct=(i % 2 == 0), order=0),
                    Alternative(id=f"tf{i}-f", text="Falso", is_correct=(i % 2 == 1), order=1),
                ),
            )
        )
        order += 1
    for i in range(open_items):
        items.append(AssessmentItem(id=f"open{i}", order=order, kind="open", statement="Explain"))
        order += 1

    return Evaluation(
        id=evaluation_id,
        items=tuple(items),
        randomize_items=randomize_items,
        randomize_alternatives=randomize_alternatives,
        balance_answers=balance_answers,
    )


def draw_sheet(
    version: ExamVersion,
    choices: Dict[str, int],
    *,
    geometry: Optional[SheetGeometry] = None,
    fiducial: Tuple[float, float] = (300.0, 50.0),
    size: float = 100.0,
    shape: Tuple[int, int] = (800, 1100),
) -> Tuple[np.ndarray, FiducialCorners]:
    """
    White page with a solid square standing in for the QR, printed bubble
    outlines, and filled disks for ``choices`` (item id -> slot).
    """
    geometry = geometry or SheetGeometry()
    image = np.full((shape[0], shape[1], 3), 255, dtype=np.uint8)
    x0, y0 = fiducial
    corners = FiducialCorners(
        top_left=(x0, y0),
        top_right=(x0 + size, y0),
        bottom_right=(x0 + size, y0 + size),
        bottom_left=(x0, y0 + size),
    )
    cv2.rectangle(image, (int(x0), int(y0)), (int(x0 + size), int(y0 + size)), (0, 0, 0), -1)

    grid = locate_bubbles(corners, version, geometry)
    for bubble in grid.bubbles:
        center = (int(round(bubble.x)), int(round(bubble.y)))
        radius = int(round(bubble.radius))
        if choices.get(bubble.item_id) == bubble.slot:
            cv2.circle(image, center, radius + 2, (0, 0, 0), -1)
        else:
            cv2.circle(image, center, radius, (0, 0, 0), 1)
    return image, corners


def evaluation_json(evaluation: Evaluation) -> dict:
    return {
        "id": evaluation.id,
        "randomizeItems": evaluation.randomize_items,
        "randomizeAlternatives": evaluation.randomize_alternatives,
        "balanceAnswers": evaluation.balance_answers,
        "items": [
            {
                "id": item.id,
                "order": item.order,
                "kind": item.kind,
                "statement": item.statement,
                "points": item.points,
                "alternatives": [alt.to_dict() for alt in item.alternatives],
            }
            for item in evaluation.items
        ],
    }


@pytest.fixture
def evaluation() -> Evaluation:
    return build_evaluation()
