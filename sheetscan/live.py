from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from .capture import CameraStream, CaptureLoop
from .config import SETTINGS
from .errors import CameraAccessError
from .fiducial import AlignmentVerdict
from .geometry import SheetGeometry
from .main import EvaluationIn
from .models import ScanAttempt
from .reconcile import ScanProcessor
from .store import ResponseStore
from .versions import validate_items

WINDOW_TITLE = "sheetscan"


def _load_json(path: Optional[Path]):
    if path is None:
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Grade answer sheets from a live camera.")
    parser.add_argument("--evaluation", type=Path, required=True, help="evaluation JSON file")
    parser.add_argument("--seed", required=True, help="seed used when the sheets were printed")
    parser.add_argument("--roster", type=Path, help="JSON object {studentId: name}")
    parser.add_argument("--camera", type=int, default=SETTINGS.camera_index)
    parser.add_argument("--output", type=Path, default=Path("responses.json"))
    return parser


async def run_session(args: argparse.Namespace) -> ResponseStore:
    evaluation = EvaluationIn.model_validate(_load_json(args.evaluation)).to_domain()
    validate_items(evaluation.items, SETTINGS.max_alternatives)
    store = ResponseStore()
    processor = ScanProcessor(
        evaluation,
        args.seed,
        store,
        geometry=SheetGeometry(max_alternatives=SETTINGS.max_alternatives),
        roster=_load_json(args.roster),
    )

    loop: Optional[CaptureLoop] = None

    def show(frame: np.ndarray, verdict: Optional[AlignmentVerdict]) -> None:
        cv2.imshow(WINDOW_TITLE, frame)
        if cv2.waitKey(1) & 0xFF == ord("q") and loop is not None:
            loop.stop()

    def report(attempt: ScanAttempt) -> None:
        who = attempt.student_name or (attempt.payload.student_id if attempt.payload else "?")
        print(f"[OMR-Scanner] {who}: {attempt.status} {attempt.message}")

    loop = CaptureLoop(
        processor,
        lambda: CameraStream(args.camera).open(),
        on_overlay=show,
        on_result=report,
    )
    try:
        await loop.run()
    finally:
        loop.stop()
        cv2.destroyAllWindows()
    return store


def main() -> None:
    args = build_parser().parse_args()
    try:
        store = asyncio.run(run_session(args))
    except CameraAccessError as exc:
        raise SystemExit(f"Camera not available: {exc}") from exc
    except KeyboardInterrupt:
        return

    evaluation_id = _load_json(args.evaluation)["id"]
    responses = [response.to_dict() for response in store.for_evaluation(evaluation_id)]
    args.output.write_text(json.dumps(responses, indent=2), encoding="utf-8")
    print(f"[OMR-Scanner] Wrote {len(responses)} responses to {args.output}")


if __name__ == "__main__":
    main()
