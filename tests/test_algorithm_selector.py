"""
Tests for FFD / BFD / HYBRID selection, ordering and bin ranking.
"""

import uuid

import pytest

from app.schemas.bin_optimization import AlgorithmType, ItemDimensions, PlacementItem
from app.services.bin_optimization.algorithm_selector import (
    ScoredCandidate,
    order_items,
    rank_candidates,
    select_algorithm,
    volume_variance,
)
from app.services.bin_optimization.capacity import validate_capacity
from tests.helpers import make_bin


def make_placement(lot, total_cubic):
    return PlacementItem(
        material_id=uuid.uuid4(),
        material_code=f"M-{lot}",
        facility_id=uuid.uuid4(),
        lot_number=lot,
        quantity=1,
        dimensions=ItemDimensions(
            length_inches=12, width_inches=12, height_inches=12, cubic_feet=total_cubic,
        ),
    )


def candidate(location, cubic, score):
    item = ItemDimensions(length_inches=1, width_inches=1, height_inches=1, cubic_feet=cubic)
    validation = validate_capacity(location, item, 1)
    return ScoredCandidate(
        location=location,
        validation=validation,
        score=score,
        confidence=0.5,
        reason="test",
        utilization_after=location.utilization_after(cubic),
    )


def test_ffd_processes_largest_first():
    items = [make_placement("L1", 2.31), make_placement("L2", 7.81), make_placement("L3", 1.04)]
    ordered = order_items(items, AlgorithmType.FFD)
    assert [i.total_cubic_feet for i in ordered] == [7.81, 2.31, 1.04]


def test_hybrid_uses_descending_volume():
    items = [make_placement("L1", 3.0), make_placement("L2", 5.0), make_placement("L3", 4.0)]
    ordered = order_items(items, AlgorithmType.HYBRID)
    assert [i.lot_number for i in ordered] == ["L2", "L3", "L1"]


def test_bfd_orders_by_similarity_to_median():
    items = [make_placement("L1", 1.0), make_placement("L2", 2.0), make_placement("L3", 2.2)]
    ordered = order_items(items, AlgorithmType.BFD)
    assert ordered[0].lot_number == "L2"


def test_high_variance_selects_ffd():
    items = [make_placement("L1", 1.0), make_placement("L2", 10.0)]
    strategy = select_algorithm(items, [make_bin()])
    assert strategy.algorithm == AlgorithmType.FFD.value
    assert strategy.volume_variance > 2.0


def test_uniform_items_in_full_warehouse_select_bfd():
    items = [make_placement("L1", 1.0), make_placement("L2", 1.1)]
    bins = [make_bin(total=100, used=80), make_bin(total=100, used=75)]
    assert select_algorithm(items, bins).algorithm == AlgorithmType.BFD.value


def test_mixed_batch_selects_hybrid():
    items = [make_placement("L1", 1.0), make_placement("L2", 1.1)]
    bins = [make_bin(total=100, used=10)]
    assert select_algorithm(items, bins).algorithm == AlgorithmType.HYBRID.value


def test_single_item_has_zero_variance():
    assert volume_variance([5.0]) == 0.0


def test_ffd_ranks_by_score():
    a = candidate(make_bin(location_code="A"), 5, 60)
    b = candidate(make_bin(location_code="B"), 5, 80)
    assert rank_candidates(AlgorithmType.FFD, [a, b])[0] is b


def test_bfd_prefers_tightest_bin():
    roomy = candidate(make_bin(total=100, location_code="ROOMY"), 10, 90)
    tight = candidate(make_bin(total=12, location_code="TIGHT"), 10, 50)
    ranked = rank_candidates(AlgorithmType.BFD, [roomy, tight])
    assert ranked[0] is tight
    assert ranked[0].residual_slack == pytest.approx(2.0)


def test_bfd_breaks_near_ties_by_score():
    tight = candidate(make_bin(total=10.5, location_code="T1"), 10, 40)
    almost = candidate(make_bin(total=11.0, location_code="T2"), 10, 70)
    assert rank_candidates(AlgorithmType.BFD, [tight, almost])[0] is almost


def test_hybrid_rewards_filling_remaining_space():
    roomy = candidate(make_bin(total=100, location_code="ROOMY"), 10, 62)
    snug = candidate(make_bin(total=10, location_code="SNUG"), 10, 55)
    assert rank_candidates(AlgorithmType.HYBRID, [roomy, snug])[0] is snug
