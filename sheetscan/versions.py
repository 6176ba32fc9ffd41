"""
Version generator: per-row item order, per-item alternative order, answer key.

A row is never stored. Both the printing side and the scanner call
``generate_version`` with the same evaluation, seed and row label and get the
same result.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    FALSE_LETTER,
    LETTERS,
    OPEN_MARKER,
    TRUE_LETTER,
    Alternative,
    AssessmentItem,
    Evaluation,
    ExamVersion,
    VersionItem,
)
from .shuffle import permute, seed_material, string_hash


def require_seed(seed: str) -> str:
    if not isinstance(seed, str) or not seed:
        raise ValueError("seed_required")
    return seed


def row_labels(count: int) -> List[str]:
    if count < 1 or count > 26:
        raise ValueError("row_count_out_of_range")
    return [chr(ord("A") + i) for i in range(count)]


def validate_items(items: Iterable[AssessmentItem], max_alternatives: int) -> None:
    """
    Authoring-time checks. The scanner samples at most ``max_alternatives``
    bubbles per question, so an item printed with more would be truncated.
    """
    seen = set()
    for item in items:
        if item.id in seen:
            raise ValueError(f"duplicate_item:{item.id}")
        seen.add(item.id)
        if item.kind == "multiple_choice":
            count = len(item.alternatives)
            if count < 2 or count > min(max_alternatives, len(LETTERS)):
                raise ValueError(f"alternative_count_out_of_range:{item.id}")
            if sum(1 for alt in item.alternatives if alt.is_correct) != 1:
                raise ValueError(f"expected_one_correct_alternative:{item.id}")
        elif item.kind == "true_false":
            if len(item.alternatives) != 2:
                raise ValueError(f"true_false_needs_two_alternatives:{item.id}")
        elif item.kind != "open":
            raise ValueError(f"unknown_item_kind:{item.kind}")


def _canonical(alternatives: Sequence[Alternative]) -> List[Alternative]:
    return sorted(alternatives, key=lambda alt: alt.order)


def _correct_slot(alternatives: Sequence[Alternative]) -> int:
    return next((i for i, alt in enumerate(alternatives) if alt.is_correct), -1)


def _move_correct(alternatives: List[Alternative], to_slot: int) -> bool:
    from_slot = _correct_slot(alternatives)
    if from_slot == -1 or from_slot == to_slot or to_slot >= len(alternatives):
        return False
    alternatives[from_slot], alternatives[to_slot] = alternatives[to_slot], alternatives[from_slot]
    return True


def _balance(entries: List[List[Alternative]], seed: str, row_label: str) -> None:
    """
    Even out correct-answer positions across a row, in place.

    ``entries`` are the shuffled alternative lists of the row's multiple-choice
    items in display order. Quota per slot is n // k, plus one for n % k
    slots, where k is the smallest alternative count in the row. The slots that
    get the extra one start at an offset hashed from seed and row, so no letter
    is favoured. Then no four consecutive questions keep the same letter.
    """
    n = len(entries)
    if n < 2:
        return
    slots = min(len(alternatives) for alternatives in entries)
    if slots < 2:
        return

    first_extra = (string_hash(seed_material(seed, row_label, "quota")) & 0xFFFFFFFF) % slots
    targets = [
        n // slots + (1 if (s - first_extra) % slots < n % slots else 0) for s in range(slots)
    ]
    answers = [_correct_slot(alternatives) for alternatives in entries]
    counts = [0] * slots
    for answer in answers:
        if 0 <= answer < slots:
            counts[answer] += 1

    for over in range(slots):
        excess = counts[over] - targets[over]
        while excess > 0:
            under = next((s for s in range(slots) if counts[s] < targets[s]), None)
            if under is None:
                break
            key = seed_material(seed, row_label, LETTERS[over], LETTERS[under], excess)
            start = (string_hash(key) & 0xFFFFFFFF) % n
            pick = next(
                (idx for idx in ((start + i) % n for i in range(n)) if answers[idx] == over),
                None,
            )
            if pick is None or not _move_correct(entries[pick], under):
                break
            answers[pick] = under
            counts[over] -= 1
            counts[under] += 1
            excess -= 1

    for i in range(n - 3):
        current = answers[i]
        if current < 0 or any(answers[i + k] != current for k in (1, 2, 3)):
            continue
        choices = [s for s in range(slots) if s != current]
        new_slot = choices[i % len(choices)]
        if _move_correct(entries[i + 3], new_slot):
            answers[i + 3] = new_slot


def generate_version(evaluation: Evaluation, seed: str, row_label: str) -> ExamVersion:
    require_seed(seed)
    ordered = sorted(evaluation.items, key=lambda item: item.order)
    if evaluation.randomize_items:
        ordered = permute(seed_material(seed, row_label), ordered)

    alternatives_by_position: List[List[Alternative]] = []
    for item in ordered:
        alternatives = _canonical(item.alternatives)
        if item.kind == "multiple_choice" and evaluation.randomize_alternatives:
            alternatives = permute(seed_material(seed, row_label, item.id), alternatives)
        alternatives_by_position.append(alternatives)

    if evaluation.randomize_alternatives and evaluation.balance_answers:
        _balance(
            [
                alternatives
                for item, alternatives in zip(ordered, alternatives_by_position)
                if item.kind == "multiple_choice"
            ],
            seed,
            row_label,
        )

    return ExamVersion(
        row_label=row_label,
        seed=seed,
        items=tuple(
            VersionItem(number=index + 1, item=item, alternatives=tuple(alternatives))
            for index, (item, alternatives) in enumerate(zip(ordered, alternatives_by_position))
        ),
    )


def generate_versions(
    evaluation: Evaluation, seed: str, rows: Iterable[str]
) -> Dict[str, ExamVersion]:
    return {row: generate_version(evaluation, seed, row) for row in rows}


def _true_false_letter(item: AssessmentItem) -> str:
    canonical = _canonical(item.alternatives)
    if canonical and canonical[0].is_correct:
        return TRUE_LETTER
    return FALSE_LETTER


def key_letter(entry: VersionItem) -> str:
    kind = entry.item.kind
    if kind == "true_false":
        return _true_false_letter(entry.item)
    if kind == "multiple_choice":
        slot = entry.correct_slot
        if 0 <= slot < len(LETTERS):
            return LETTERS[slot]
    return OPEN_MARKER


def answer_key_for(version: ExamVersion) -> Dict[int, str]:
    return {entry.number: key_letter(entry) for entry in version.items}


def answer_key(
    evaluation: Evaluation, seed: str, rows: Optional[Iterable[str]] = None
) -> Dict[str, Dict[int, str]]:
    labels = list(rows) if rows is not None else ["A"]
    versions = generate_versions(evaluation, seed, labels)
    return {row: answer_key_for(version) for row, version in versions.items()}
