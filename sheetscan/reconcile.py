from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Protocol, Sequence

import numpy as np

from .config import SETTINGS
from .errors import DecodeMismatch, IncompleteScan, InvalidPayload, SubmissionError, UnknownStudent
from .fiducial import FiducialDetection, decode_payload
from .geometry import SheetGeometry, locate_bubbles
from .marks import detect_marks, to_luminance
from .models import (
    AnswerPair,
    Evaluation,
    FiducialPayload,
    GradedResponse,
    MarkReading,
    ScanAttempt,
)
from .versions import generate_version, require_seed


class Submitter(Protocol):
    async def submit(self, response: GradedResponse) -> str:
        ...


def check_evaluation(payload: FiducialPayload, evaluation: Evaluation) -> None:
    if payload.evaluation_id != evaluation.id:
        raise DecodeMismatch(expected=evaluation.id, found=payload.evaluation_id)


def reconcile(
    evaluation: Evaluation,
    seed: str,
    payload: FiducialPayload,
    readings: Sequence[MarkReading],
) -> GradedResponse:
    """
    Map detected slots back to alternative identities by replaying the row's
    shuffle. All or nothing: every scoreable item needs an answer.
    """
    check_evaluation(payload, evaluation)
    version = generate_version(evaluation, seed, payload.row_label)
    scoreable = [entry for entry in version.items if entry.item.is_scoreable]
    marked: Dict[str, MarkReading] = {
        reading.item_id: reading for reading in readings if reading.answered
    }

    answers: List[AnswerPair] = []
    correct = 0
    earned = 0.0
    for entry in scoreable:
        reading = marked.get(entry.item.id)
        if reading is None or reading.slot >= len(entry.alternatives):
            continue
        chosen = entry.alternatives[reading.slot]
        answers.append(AnswerPair(item_id=entry.item.id, selected_alternative_id=chosen.id))
        if chosen.is_correct:
            correct += 1
            earned += entry.item.points

    if len(answers) != len(scoreable):
        raise IncompleteScan(read=len(answers), expected=len(scoreable))

    return GradedResponse(
        evaluation_id=evaluation.id,
        student_id=payload.student_id,
        row_label=payload.row_label,
        answers=tuple(answers),
        correct_count=correct,
        earned_points=earned,
        total_points=sum(entry.item.points for entry in scoreable),
    )


class ScanProcessor:
    """Locate, detect, reconcile and submit one aligned frame."""

    def __init__(
        self,
        evaluation: Evaluation,
        seed: str,
        submitter: Submitter,
        *,
        geometry: Optional[SheetGeometry] = None,
        threshold: Optional[float] = None,
        roster: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.evaluation = evaluation
        self.seed = require_seed(seed)
        self.geometry = geometry or SheetGeometry(max_alternatives=SETTINGS.max_alternatives)
        self.threshold = float(threshold if threshold is not None else SETTINGS.filled_threshold)
        self.roster = dict(roster) if roster is not None else None
        self._submitter = submitter

    def _student_name(self, payload: FiducialPayload) -> Optional[str]:
        if self.roster is None:
            return None
        if payload.student_id not in self.roster:
            raise UnknownStudent(payload.student_id)
        return self.roster[payload.student_id]

    def read(self, frame: np.ndarray, detection: FiducialDetection, attempt: ScanAttempt) -> GradedResponse:
        try:
            payload = decode_payload(detection.text)
        except InvalidPayload:
            attempt.status = "error"
            raise
        attempt.payload = payload
        try:
            check_evaluation(payload, self.evaluation)
        except DecodeMismatch:
            attempt.status = "mismatch"
            raise
        attempt.student_name = self._student_name(payload)

        version = generate_version(self.evaluation, self.seed, payload.row_label)
        attempt.grid = locate_bubbles(detection.corners, version, self.geometry)
        attempt.marks = detect_marks(to_luminance(frame), attempt.grid, self.threshold)
        try:
            return reconcile(self.evaluation, self.seed, payload, attempt.marks)
        except IncompleteScan:
            attempt.status = "incomplete"
            raise

    async def submit(self, response: GradedResponse) -> str:
        try:
            return await self._submitter.submit(response)
        except SubmissionError:
            raise
        except Exception as exc:
            raise SubmissionError(f"submission_failed: {exc}") from exc

    async def process(self, frame: np.ndarray, detection: FiducialDetection) -> ScanAttempt:
        attempt = ScanAttempt(raw_payload=detection.text, aligned=True)
        try:
            response = self.read(frame, detection, attempt)
        except DecodeMismatch as exc:
            attempt.message = str(exc)
            return attempt
        except IncompleteScan as exc:
            attempt.message = str(exc)
            print(f"[OMR-Scanner] Incomplete read for {detection.text}: {exc}")
            return attempt
        except ValueError as exc:
            attempt.status = "error"
            attempt.message = str(exc)
            print(f"[OMR-Scanner] Scan rejected for {detection.text}: {exc}")
            return attempt

        try:
            await self.submit(response)
        except SubmissionError as exc:
            attempt.status = "error"
            attempt.message = str(exc)
            print(f"[OMR-Scanner] Submission failed for student {response.student_id}: {exc}")
            return attempt

        attempt.status = "success"
        attempt.response = response
        attempt.message = f"{response.correct_count}/{len(response.answers)} correct"
        print(
            f"[OMR-Scanner] Submitted student {response.student_id} row {response.row_label}: "
            f"{attempt.message}"
        )
        return attempt
