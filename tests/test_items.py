import math

import pytest

from arvis.items import ItemSet, ScreeningDecision


def _decision(stage, matched, items):
    return ScreeningDecision(
        stage=stage,
        metric="m",
        threshold=0.5,
        items_matched=tuple(matched),
        values={item: float(item in matched) for item in items},
    )


@pytest.fixture
def pool():
    return ItemSet.from_columns([f"arvis_{i}" for i in range(1, 7)])


def test_from_columns_keeps_order_and_removes_duplicates():
    items = ItemSet.from_columns(["b", "a", "b", "c"])
    assert items.items == ("b", "a", "c")
    assert len(items) == 3
    assert "a" in items


def test_drop_returns_new_set_and_records_decision(pool):
    decision = _decision("distribution", ["arvis_2", "arvis_5"], pool.items)
    reduced = pool.drop(decision)

    assert reduced.items == ("arvis_1", "arvis_3", "arvis_4", "arvis_6")
    assert pool.items == tuple(f"arvis_{i}" for i in range(1, 7))
    assert reduced.trail == (decision,)


def test_drop_ignores_unknown_names(pool):
    reduced = pool.drop(_decision("distribution", ["arvis_99"], pool.items))
    assert reduced.items == pool.items
    assert len(reduced.trail) == 1


def test_retain_records_everything_else_as_removed(pool):
    kept = pool.retain(["arvis_1", "arvis_4"], stage="top_loading", rationale="best two")

    assert kept.items == ("arvis_1", "arvis_4")
    last = kept.trail[-1]
    assert last.stage == "top_loading"
    assert last.items_matched == ("arvis_2", "arvis_3", "arvis_5", "arvis_6")
    assert last.rationale == "best two"
    assert math.isnan(last.threshold)


def test_retain_rejects_items_outside_the_set(pool):
    with pytest.raises(ValueError, match="outside the set"):
        pool.retain(["arvis_1", "other_1"], stage="top_loading")


def test_frozen_set_cannot_be_narrowed(pool):
    frozen = pool.freeze()
    with pytest.raises(ValueError, match="frozen"):
        frozen.drop(_decision("cross_loading", ["arvis_1"], pool.items))
    with pytest.raises(ValueError, match="frozen"):
        frozen.retain(["arvis_1"], stage="top_loading")


def test_removed_by_stage_accumulates_across_decisions(pool):
    reduced = (
        pool.drop(_decision("distribution", ["arvis_1"], pool.items))
        .drop(_decision("cross_loading", ["arvis_2"], pool.items))
        .drop(_decision("cross_loading", ["arvis_3"], pool.items))
    )
    assert reduced.removed_by_stage() == {
        "distribution": ("arvis_1",),
        "cross_loading": ("arvis_2", "arvis_3"),
    }


def test_trail_frame_lists_every_evaluated_item(pool):
    reduced = pool.drop(_decision("distribution", ["arvis_1"], pool.items))
    frame = reduced.trail_frame()

    assert list(frame.columns) == ['stage', 'item', 'metric', 'value', 'threshold', 'flagged']
    assert len(frame) == 6
    assert frame.loc[frame['item'] == "arvis_1", 'flagged'].item()
    assert frame['flagged'].sum() == 1


def test_empty_trail_frame_has_columns(pool):
    assert list(pool.trail_frame().columns) == ['stage', 'item', 'metric', 'value', 'threshold', 'flagged']


def test_dict_round_trip_preserves_frozen_flag(pool):
    payload = pool.drop(_decision("distribution", ["arvis_6"], pool.items)).freeze().to_dict()

    assert payload['removed'] == {"distribution": ["arvis_6"]}
    restored = ItemSet.from_dict(payload)
    assert restored.items == ("arvis_1", "arvis_2", "arvis_3", "arvis_4", "arvis_5")
    assert restored.frozen


def test_revise_reopens_a_frozen_set_on_the_record(pool):
    final = pool.retain(["arvis_1", "arvis_2", "arvis_3"], stage="top_loading").freeze()
    revised = final.revise(["arvis_1", "arvis_3"], stage="cfa_local_misfit", rationale="redundant with arvis_1")

    assert revised.items == ("arvis_1", "arvis_3")
    assert revised.frozen
    assert final.items == ("arvis_1", "arvis_2", "arvis_3")
    last = revised.trail[-1]
    assert last.metric == "reopened"
    assert last.items_matched == ("arvis_2",)
    assert last.rationale == "redundant with arvis_1"
    assert revised.removed_by_stage()["cfa_local_misfit"] == ("arvis_2",)


def test_revise_needs_a_frozen_set_and_a_rationale(pool):
    with pytest.raises(ValueError, match="Only a frozen"):
        pool.revise(["arvis_1"], stage="cfa_local_misfit", rationale="x")
    with pytest.raises(ValueError, match="requires a rationale"):
        pool.freeze().revise(["arvis_1"], stage="cfa_local_misfit", rationale="")
    with pytest.raises(ValueError, match="outside the set"):
        pool.freeze().revise(["other_1"], stage="cfa_local_misfit", rationale="x")
