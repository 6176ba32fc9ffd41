from __future__ import annotations

from collections import Counter

import pytest

from sheetscan.models import Alternative, AssessmentItem, Evaluation
from sheetscan.shuffle import permute, seed_material
from sheetscan.versions import (
    _balance,
    answer_key,
    generate_version,
    row_labels,
    validate_items,
)

from tests.conftest import build_evaluation


def test_answer_key_is_reproducible_for_same_seed_and_row():
    evaluation = build_evaluation(mc_items=2, tf_items=1)
    first = answer_key(evaluation, "exam-2024", ["A"])
    second = answer_key(evaluation, "exam-2024", ["A"])
    assert first == second
    assert set(first["A"]) == {1, 2, 3}
    assert first["A"][1] in "ABCD"
    assert first["A"][2] in "ABCD"
    assert first["A"][3] == "V"


def test_other_row_keeps_the_same_structure():
    evaluation = build_evaluation(mc_items=2, tf_items=1)
    key = answer_key(evaluation, "exam-2024", ["A", "B"])
    assert set(key) == {"A", "B"}
    assert set(key["B"]) == set(key["A"]) == {1, 2, 3}
    assert key["B"][3] == "V"


def test_true_false_is_never_shuffled():
    evaluation = build_evaluation(mc_items=3, tf_items=2)
    for row in "ABC":
        version = generate_version(evaluation, "exam-2024", row)
        for entry in version.items:
            if entry.item.kind == "true_false":
                assert [alt.id for alt in entry.alternatives] == [alt.id for alt in entry.item.alternatives]
    key = answer_key(evaluation, "exam-2024", ["A"])["A"]
    assert key[4] == "V"
    assert key[5] == "F"


def test_open_items_use_the_manual_marker():
    evaluation = build_evaluation(mc_items=1, tf_items=0, open_items=1)
    assert answer_key(evaluation, "s33d", ["A"])["A"][2] == "-"


def test_key_letter_points_at_the_correct_alternative():
    evaluation = build_evaluation(mc_items=6, tf_items=0)
    version = generate_version(evaluation, "exam-2024", "C")
    key = answer_key(evaluation, "exam-2024", ["C"])["C"]
    for entry in version.items:
        letter = key[entry.number]
        assert entry.alternatives["ABCD".index(letter)].is_correct


def test_without_alternative_randomization_order_is_canonical():
    evaluation = build_evaluation(mc_items=4, tf_items=0, randomize_alternatives=False)
    version = generate_version(evaluation, "exam-2024", "B")
    for entry in version.items:
        assert [alt.order for alt in entry.alternatives] == [0, 1, 2, 3]
    # Item i has its correct answer at canonical index i % 4.
    assert answer_key(evaluation, "exam-2024", ["B"])["B"] == {1: "A", 2: "B", 3: "C", 4: "D"}


def test_item_randomization_renumbers_sequentially():
    evaluation = build_evaluation(mc_items=8, tf_items=2, randomize_items=True)
    version = generate_version(evaluation, "exam-2024", "A")
    assert [entry.number for entry in version.items] == list(range(1, 11))
    assert sorted(entry.item.id for entry in version.items) == sorted(item.id for item in evaluation.items)
    again = generate_version(evaluation, "exam-2024", "A")
    assert [entry.item.id for entry in again.items] == [entry.item.id for entry in version.items]


def test_balancing_spreads_correct_answers_evenly():
    items = tuple(
        AssessmentItem(
            id=f"q{i}",
            order=i + 1,
            kind="multiple_choice",
            alternatives=tuple(
                Alternative(id=f"q{i}-{j}", text=str(j), is_correct=(j == 0), order=j) for j in range(4)
            ),
        )
        for i in range(8)
    )
    evaluation = Evaluation(id="balanced", items=items)
    for row in ("A", "B", "C"):
        key = answer_key(evaluation, "balance-seed", [row])[row]
        assert Counter(key.values()) == {"A": 2, "B": 2, "C": 2, "D": 2}


def test_balancing_can_be_disabled():
    plain = build_evaluation(mc_items=8, tf_items=0, balance_answers=False)
    version = generate_version(plain, "exam-2024", "A")
    # Without balancing every item is exactly the per-item shuffle.
    for entry in version.items:
        expected = permute(seed_material("exam-2024", "A", entry.item.id), entry.item.alternatives)
        assert list(entry.alternatives) == expected


def test_only_the_empty_seed_is_rejected():
    with pytest.raises(ValueError):
        generate_version(build_evaluation(), "", "A")
    # Any non-empty passphrase is a valid seed, whitespace included.
    assert generate_version(build_evaluation(), "   ", "A").seed == "   "


def test_row_labels():
    assert row_labels(3) == ["A", "B", "C"]
    with pytest.raises(ValueError):
        row_labels(0)


def test_validate_items_rejects_more_alternatives_than_scanned():
    evaluation = build_evaluation(mc_items=1, alternatives=5)
    with pytest.raises(ValueError, match="alternative_count_out_of_range"):
        validate_items(evaluation.items, max_alternatives=4)
    validate_items(evaluation.items, max_alternatives=5)


def test_validate_items_requires_single_correct_alternative():
    item = AssessmentItem(
        id="bad",
        order=1,
        kind="multiple_choice",
        alternatives=(
            Alternative(id="x", text="x", is_correct=True, order=0),
            Alternative(id="y", text="y", is_correct=True, order=1),
        ),
    )
    with pytest.raises(ValueError, match="expected_one_correct_alternative"):
        validate_items([item], max_alternatives=4)


def test_validate_items_checks_true_false_shape():
    item = AssessmentItem(id="tf", order=1, kind="true_false", alternatives=())
    with pytest.raises(ValueError):
        validate_items([item], max_alternatives=4)


def test_exam_2024_item_order_is_pinned():
    # Row A orders twelve items as permute("exam-2024-A") does in the browser:
    # positions hold items 5, 7, 1, 0, 8, 11, 2, 4, 9, 10, 3, 6.
    evaluation = build_evaluation(
        mc_items=12, tf_items=0, randomize_items=True, randomize_alternatives=False
    )
    key = answer_key(evaluation, "exam-2024", ["A"])["A"]
    assert key == {
        1: "B", 2: "D", 3: "B", 4: "A", 5: "A", 6: "D",
        7: "C", 8: "A", 9: "B", 10: "C", 11: "D", 12: "C",
    }


@pytest.mark.parametrize("mc_items", [2, 3])
def test_remainder_quota_rotates_across_seeds(mc_items):
    seen = Counter()
    for s in range(60):
        key = answer_key(build_evaluation(mc_items=mc_items, tf_items=0), f"seed-{s}", ["A"])["A"]
        # Fewer items than letters: every correct answer sits on its own letter.
        assert len(set(key.values())) == mc_items
        seen.update(key.values())
    assert set(seen) == {"A", "B", "C", "D"}


def _two_way(prefix, correct_slots):
    return [
        [
            Alternative(id=f"{prefix}{i}-{j}", text=str(j), is_correct=(j == slot), order=j)
            for j in range(2)
        ]
        for i, slot in enumerate(correct_slots)
    ]


def test_balance_breaks_runs_of_four_equal_letters():
    # Quotas (4 and 4) are already met, so only the run breaking moves answers.
    entries = _two_way("q", [0, 0, 0, 0, 1, 1, 1, 1])
    _balance(entries, "exam-2024", "A")

    letters = ["AB"[next(j for j, alt in enumerate(alts) if alt.is_correct)] for alts in entries]
    assert letters == ["A", "A", "A", "B", "B", "B", "A", "B"]
    assert all(len(set(letters[i:i + 4])) > 1 for i in range(len(letters) - 3))
    assert [sorted(alt.id for alt in alts) for alts in entries] == [
        [f"q{i}-0", f"q{i}-1"] for i in range(8)
    ]
