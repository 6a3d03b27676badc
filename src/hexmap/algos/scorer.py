from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.optimize import linear_sum_assignment

from hexmap.data.hex_grid import HexGrid, TargetDistricts


# Coordinates are metres; distances in the assignment cost are measured in
# units of 1e6 m so the position term is on the scale of the other two.
COORD_SCALE = 1e-6

# objective weights
ADJACENCY_WEIGHT = 1.0
POSITION_WEIGHT = 6.0
BALANCE_WEIGHT = 12.0


class AssignmentError(ValueError):
    """A partition or cost matrix that cannot be matched one-to-one to the targets."""


@dataclass(frozen=True)
class AssignmentBijection:
    pairs: np.ndarray  # pairs[g-1] = target district id for raw group g
    cost: float

    def relabel(self, labels) -> np.ndarray:
        return self.pairs[np.asarray(labels, dtype=int) - 1]


@dataclass(frozen=True)
class ScoreTerms:
    adjacency: float   # mean share of true neighbor links kept
    position: float    # assignment cost / n
    balance: float     # std of group area shares
    score: float


def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


class DistrictAlignmentScorer:
    """
    Scores how well a grouping of grid cells lines up with the real districts:

        mean(kept neighbor links / true links)
          - 6 * (centroid assignment cost / n)
          - 12 * std(group area shares)

    Everything is precomputed at construction and never written afterwards,
    so one instance can be shared by concurrent search runs.
    """

    def __init__(self, grid: HexGrid, targets: TargetDistricts):
        if targets.n != grid.n_distr:
            raise ValueError(f"targets.n ({targets.n}) != grid.n_distr ({grid.n_distr})")
        if targets.n < 2:
            raise ValueError("Scoring needs at least 2 districts; handle n == 1 by dissolving all cells.")

        self.n_distr = int(targets.n)
        self.n_cells = int(grid.n_cells)

        self._hex_xy = _frozen(np.asarray(grid.centroids, dtype=float))
        self._target_xy = _frozen(np.asarray(targets.coords, dtype=float))

        areas = np.asarray(grid.area, dtype=float)
        self._areas = _frozen(areas / areas.sum())

        self._edges = _frozen(grid.edges())

        t_adj = np.zeros((self.n_distr, self.n_distr), dtype=bool)
        for i, nbrs in enumerate(targets.adj):
            for j in nbrs:
                if i != j:
                    t_adj[i, j] = True
                    t_adj[j, i] = True
        self._target_adj = _frozen(t_adj)
        self._tot_links = _frozen(targets.degree)

    # ----------------------------
    # Validation
    # ----------------------------
    def _check(self, labels) -> np.ndarray:
        labels = np.asarray(labels)
        if labels.shape != (self.n_cells,):
            raise AssignmentError(f"Partition has shape {labels.shape}; expected ({self.n_cells},).")
        if not np.issubdtype(labels.dtype, np.integer):
            as_int = labels.astype(int) if np.isfinite(labels.astype(float)).all() else None
            if as_int is None or not (labels == as_int).all():
                raise AssignmentError("Partition labels must be integer district ids.")
        labels = labels.astype(int)
        bad = (labels < 1) | (labels > self.n_distr)
        if bad.any():
            raise AssignmentError(
                f"Partition labels must lie in 1..{self.n_distr}; found {sorted(set(labels[bad].tolist()))[:10]}."
            )
        counts = np.bincount(labels - 1, minlength=self.n_distr)
        if (counts == 0).any():
            missing = (np.where(counts == 0)[0] + 1).tolist()
            raise AssignmentError(
                f"Partition leaves group(s) {missing} empty; the {self.n_distr}x{self.n_distr} "
                "cost matrix cannot be built."
            )
        return labels

    # ----------------------------
    # Matching
    # ----------------------------
    def _group_centroids(self, labels: np.ndarray) -> np.ndarray:
        idx = labels - 1
        counts = np.bincount(idx, minlength=self.n_distr).astype(float)
        cx = np.bincount(idx, weights=self._hex_xy[:, 0], minlength=self.n_distr) / counts
        cy = np.bincount(idx, weights=self._hex_xy[:, 1], minlength=self.n_distr) / counts
        return np.column_stack([cx, cy])

    def _bijection(self, labels: np.ndarray) -> AssignmentBijection:
        centers = self._group_centroids(labels) * COORD_SCALE
        targets = self._target_xy * COORD_SCALE
        diff = centers[:, None, :] - targets[None, :, :]
        cost = np.sum(diff ** 2, axis=-1)

        if not np.isfinite(cost).all():
            raise AssignmentError("Assignment cost matrix contains non-finite entries.")

        rows, cols = linear_sum_assignment(cost)
        pairs = np.empty(self.n_distr, dtype=int)
        pairs[rows] = cols + 1
        return AssignmentBijection(pairs=pairs, cost=float(cost[rows, cols].sum()))

    def bijection_for(self, labels) -> AssignmentBijection:
        """Optimal group -> target correspondence for `labels` (no scoring)."""
        return self._bijection(self._check(labels))

    # ----------------------------
    # Scoring
    # ----------------------------
    def _adjacency_fraction(self, relabeled: np.ndarray) -> np.ndarray:
        n = self.n_distr
        lu = relabeled[self._edges[:, 0]] - 1
        lv = relabeled[self._edges[:, 1]] - 1
        cut = lu != lv

        d_adj = np.zeros((n, n), dtype=bool)
        d_adj[lu[cut], lv[cut]] = True
        d_adj[lv[cut], lu[cut]] = True

        shared = (d_adj & self._target_adj).sum(axis=1)
        frac = np.zeros(n, dtype=float)
        has = self._tot_links > 0
        frac[has] = shared[has] / self._tot_links[has]
        return frac

    def terms(self, labels) -> ScoreTerms:
        labels = self._check(labels)
        matcher = self._bijection(labels)
        relabeled = matcher.relabel(labels)

        adjacency = float(self._adjacency_fraction(relabeled).mean())
        position = matcher.cost / self.n_distr
        group_area = np.bincount(labels - 1, weights=self._areas, minlength=self.n_distr)
        balance = float(np.std(group_area, ddof=1))

        score = ADJACENCY_WEIGHT * adjacency - POSITION_WEIGHT * position - BALANCE_WEIGHT * balance
        return ScoreTerms(adjacency=adjacency, position=position, balance=balance, score=float(score))

    def __call__(self, labels) -> float:
        return self.terms(labels).score

    def frac_kept(self, labels) -> float:
        """Share of cell-graph edges whose endpoints share a group."""
        labels = np.asarray(labels, dtype=int)
        if len(self._edges) == 0:
            return 1.0
        kept = labels[self._edges[:, 0]] == labels[self._edges[:, 1]]
        return float(kept.mean())
