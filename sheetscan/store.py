from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .models import GradedResponse


class ResponseStore:
    """
    In-process stand-in for the persistence collaborator.
    One response per (evaluation, student); a new submission replaces the old
    one entirely.
    """

    def __init__(self) -> None:
        self._responses: Dict[Tuple[str, str], GradedResponse] = {}
        self.submissions = 0

    async def submit(self, response: GradedResponse) -> str:
        key = (response.evaluation_id, response.student_id)
        replaced = key in self._responses
        self._responses[key] = response
        self.submissions += 1
        print(
            f"[OMR-Scanner] Stored {len(response.answers)} answers for student "
            f"{response.student_id} ({'replaced' if replaced else 'new'})"
        )
        return f"{response.evaluation_id}:{response.student_id}"

    def get(self, evaluation_id: str, student_id: str) -> Optional[GradedResponse]:
        return self._responses.get((evaluation_id, student_id))

    def for_evaluation(self, evaluation_id: str) -> List[GradedResponse]:
        return [resp for (eval_id, _), resp in self._responses.items() if eval_id == evaluation_id]
