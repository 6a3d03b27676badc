import numpy as np
import pytest

from hexmap.algos.scorer import (
    COORD_SCALE,
    POSITION_WEIGHT,
    AssignmentError,
    DistrictAlignmentScorer,
)

from conftest import HALF, SIDE, cell_at


def test_target_adjacency_is_orthogonal_only(quadrant_targets):
    # NW-NE, NW-SW, NE-SE, SW-SE; the diagonals only meet at the center point
    assert quadrant_targets.adj == [[1, 2], [0, 3], [0, 3], [1, 2]]
    np.testing.assert_allclose(
        quadrant_targets.coords,
        [[HALF / 2, 3 * HALF / 2], [3 * HALF / 2, 3 * HALF / 2], [HALF / 2, HALF / 2], [3 * HALF / 2, HALF / 2]],
    )


def test_exact_quadrants_score_perfectly(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    terms = scorer.terms(quadrant_labels)

    assert terms.adjacency == pytest.approx(1.0)
    assert terms.position == pytest.approx(0.0, abs=1e-12)
    assert terms.balance == 0.0
    assert terms.score == pytest.approx(1.0)
    assert scorer(quadrant_labels) == terms.score


def test_exchanging_cells_between_diagonal_quadrants_scores_lower(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)

    swapped = quadrant_labels.copy()
    nw_inner = cell_at(square_grid, 150_000, 250_000)
    se_inner = cell_at(square_grid, 250_000, 150_000)
    swapped[nw_inner], swapped[se_inner] = swapped[se_inner], swapped[nw_inner]

    terms = scorer.terms(swapped)
    assert terms.position > 0
    assert scorer(swapped) < scorer(quadrant_labels)


def test_score_is_invariant_to_label_permutation(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    perm = np.array([3, 1, 4, 2])

    stripes = np.array([int(x // (SIDE / 4)) + 1 for x, _ in square_grid.centroids])
    for labels in (quadrant_labels, stripes):
        assert scorer(perm[labels - 1]) == pytest.approx(scorer(labels))


def test_equal_group_areas_have_no_balance_penalty(square_grid, quadrant_targets):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    stripes = np.array([int(x // (SIDE / 4)) + 1 for x, _ in square_grid.centroids])

    terms = scorer.terms(stripes)
    assert terms.balance == 0.0
    # each stripe centroid sits 50 km across and 100 km along from its matched quadrant center
    expected_cost = 4 * ((50_000 * COORD_SCALE) ** 2 + (100_000 * COORD_SCALE) ** 2)
    assert terms.position == pytest.approx(expected_cost / 4)
    assert terms.score == pytest.approx(terms.adjacency - POSITION_WEIGHT * expected_cost / 4)


def test_unequal_group_areas_are_penalized(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    lopsided = quadrant_labels.copy()
    lopsided[cell_at(square_grid, 150_000, 250_000)] = 2  # NW gives one cell to NE

    assert scorer.terms(lopsided).balance > 0


def test_bijection_is_a_permutation(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    perm = np.array([2, 4, 1, 3])
    relabeled = perm[quadrant_labels - 1]

    bij = scorer.bijection_for(relabeled)
    assert sorted(bij.pairs.tolist()) == [1, 2, 3, 4]
    assert bij.cost == pytest.approx(0.0, abs=1e-12)
    np.testing.assert_array_equal(bij.relabel(relabeled), quadrant_labels)


def test_frac_kept_counts_uncut_edges(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    # 24 rook edges in a 4x4 grid, 8 of them cross a quadrant border
    assert scorer.frac_kept(quadrant_labels) == pytest.approx(16 / 24)
    assert scorer.frac_kept(np.ones(16, dtype=int)) == 1.0


def test_repeated_calls_do_not_change_the_score(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    first = scorer(quadrant_labels[::-1].copy())
    for _ in range(3):
        scorer(quadrant_labels)
    assert scorer(quadrant_labels[::-1].copy()) == first


@pytest.mark.parametrize(
    "labels, match",
    [
        (np.ones(15, dtype=int), "shape"),
        (np.r_[np.zeros(1, dtype=int), np.tile([1, 2, 3, 4], 4)[1:]], "1..4"),
        (np.r_[np.ones(8, dtype=int), np.full(8, 2)], "empty"),
    ],
)
def test_invalid_partitions_raise(square_grid, quadrant_targets, labels, match):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)
    with pytest.raises(AssignmentError, match=match):
        scorer(labels)
    with pytest.raises(AssignmentError):
        scorer.bijection_for(labels)


def test_single_district_is_rejected(square_grid, quadrants):
    from hexmap.algos.hex_grid import HexGridConfig, build_target_districts

    one = build_target_districts(quadrants.iloc[:1], HexGridConfig())
    square_grid.n_distr = 1
    with pytest.raises(ValueError):
        DistrictAlignmentScorer(square_grid, one)


def test_fractional_labels_are_rejected(square_grid, quadrant_targets, quadrant_labels):
    scorer = DistrictAlignmentScorer(square_grid, quadrant_targets)

    with pytest.raises(AssignmentError, match="integer"):
        scorer(quadrant_labels + 0.7)
    assert scorer(quadrant_labels.astype(float)) == scorer(quadrant_labels)


def test_target_degree_counts_true_neighbors(quadrant_targets):
    np.testing.assert_array_equal(quadrant_targets.degree, [2, 2, 2, 2])
