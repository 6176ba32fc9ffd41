from __future__ import annotations

import os
import json
from datetime import datetime, timezone
from typing import Literal

import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field, ValidationError

from .config import SETTINGS
from .errors import AlignmentFailure
from .fiducial import AlignmentWindow, alignment_verdict, detect_fiducial
from .geometry import SheetGeometry, render_layout
from .imaging import decode_image, resize_to_width
from .marks import debug_overlay
from .models import Alternative, AssessmentItem, Evaluation
from .reconcile import ScanProcessor
from .store import ResponseStore
from .versions import answer_key_for, generate_versions, row_labels, validate_items


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AlternativeIn(BaseModel):
    id: str
    text: str = ""
    isCorrect: bool = False
    order: int = 0


class ItemIn(BaseModel):
    id: str
    order: int
    kind: Literal["multiple_choice", "true_false", "open"]
    statement: str = ""
    alternatives: list[AlternativeIn] = Field(default_factory=list)
    points: float = 1.0


class EvaluationIn(BaseModel):
    id: str
    items: list[ItemIn]
    randomizeItems: bool = False
    randomizeAlternatives: bool = True
    balanceAnswers: bool = True

    def to_domain(self) -> Evaluation:
        return Evaluation(
            id=self.id,
            items=tuple(
                AssessmentItem(
                    id=item.id,
                    order=item.order,
                    kind=item.kind,
                    statement=item.statement,
                    alternatives=tuple(
                        Alternative(id=alt.id, text=alt.text, is_correct=alt.isCorrect, order=alt.order)
                        for alt in item.alternatives
                    ),
                    points=item.points,
                )
                for item in self.items
            ),
            randomize_items=self.randomizeItems,
            randomize_alternatives=self.randomizeAlternatives,
            balance_answers=self.balanceAnswers,
        )


class AnswerKeyRequest(BaseModel):
    evaluation: EvaluationIn
    seed: str
    rows: int = 1


class HealthResponse(BaseModel):
    status: str
    mode: str
    version: str
    timestamp: str


class AnswerKeyResponse(BaseModel):
    answerKey: dict[str, dict[int, str]]
    versions: list[dict]
    layout: dict[str, list]


class ScanResponse(BaseModel):
    ok: bool
    result: dict


app = FastAPI(title="Answer Sheet Scanner")
OMR_VERSION = os.getenv("SHEETSCAN_VERSION", "0.1.0")
STORE = ResponseStore()
GEOMETRY = SheetGeometry(max_alternatives=SETTINGS.max_alternatives)


def _parse_evaluation(value: str) -> Evaluation:
    try:
        evaluation = EvaluationIn.model_validate(json.loads(value)).to_domain()
    except (json.JSONDecodeError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail="invalid_evaluation") from exc
    try:
        validate_items(evaluation.items, GEOMETRY.max_alternatives)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return evaluation


def _parse_roster(value: str | None) -> dict[str, str] | None:
    """
    Roster is a JSON object {studentId: name} or a list of
    {"id": ..., "name": ...} entries.
    """
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="invalid_roster") from exc

    if isinstance(parsed, dict):
        return {str(key): str(name) for key, name in parsed.items()}
    if isinstance(parsed, list):
        roster: dict[str, str] = {}
        for entry in parsed:
            if not isinstance(entry, dict) or "id" not in entry:
                raise HTTPException(status_code=400, detail="invalid_roster")
            roster[str(entry["id"])] = str(entry.get("name") or entry["id"])
        return roster
    raise HTTPException(status_code=400, detail="invalid_roster")


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        mode=SETTINGS.mode,
        version=OMR_VERSION,
        timestamp=_now_iso()
    )


@app.get("/version")
def version() -> dict:
    return {
        "name": "Answer Sheet Scanner",
        "version": OMR_VERSION,
        "mode": SETTINGS.mode,
        "timestamp": _now_iso()
    }


@app.post("/answer-key", response_model=AnswerKeyResponse)
def answer_key(request: AnswerKeyRequest) -> AnswerKeyResponse:
    evaluation = request.evaluation.to_domain()
    try:
        validate_items(evaluation.items, GEOMETRY.max_alternatives)
        versions = generate_versions(evaluation, request.seed, row_labels(request.rows))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return AnswerKeyResponse(
        answerKey={row: answer_key_for(row_version) for row, row_version in versions.items()},
        versions=[row_version.to_dict() for row_version in versions.values()],
        layout={row: render_layout(row_version, GEOMETRY) for row, row_version in versions.items()},
    )


@app.post("/scan", response_model=ScanResponse)
async def scan(
    file: UploadFile = File(...),
    evaluation: str = Form(...),
    seed: str = Form(...),
    roster: str | None = Form(None),
    threshold: float | None = Form(None),
    requireAligned: bool = Form(False),
    debug: bool = Form(False),
) -> ScanResponse:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="empty_file")

    evaluation_payload = _parse_evaluation(evaluation)
    roster_payload = _parse_roster(roster)

    try:
        image = resize_to_width(decode_image(content))
        detection = detect_fiducial(image)
        if detection is None:
            raise ValueError("fiducial_not_found")
        if requireAligned:
            height, width = image.shape[:2]
            verdict = alignment_verdict(
                detection.corners, width, height, AlignmentWindow.from_settings(SETTINGS)
            )
            if not verdict.aligned:
                raise AlignmentFailure()
        processor = ScanProcessor(
            evaluation_payload,
            seed,
            STORE,
            geometry=GEOMETRY,
            threshold=threshold,
            roster=roster_payload,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    attempt = await processor.process(image, detection)
    result = attempt.to_dict()
    result["fiducial"] = detection.corners.to_list()
    if debug and attempt.grid is not None:
        result["debugImage"] = debug_overlay(image, attempt.grid, attempt.marks)

    return ScanResponse(ok=attempt.status == "success", result=result)


@app.get("/responses/{evaluation_id}/{student_id}")
def stored_response(evaluation_id: str, student_id: str) -> dict:
    response = STORE.get(evaluation_id, student_id)
    if response is None:
        raise HTTPException(status_code=404, detail="response_not_found")
    return response.to_dict()


def serve() -> None:
    host = "0.0.0.0" if SETTINGS.mode == "docker" else "127.0.0.1"
    print(f"[OMR-Scanner] Serving on {host}:{SETTINGS.port} ({SETTINGS.mode})")
    uvicorn.run(app, host=host, port=SETTINGS.port)
