from __future__ import annotations

import math
import random
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Optional

import numpy as np
import networkx as nx
from gerrychain import Graph, Partition, updaters
from gerrychain.constraints import within_percent_of_ideal_population
from gerrychain.optimization import SingleMetricOptimizer
from gerrychain.proposals import recom
from gerrychain.tree import recursive_tree_part

from hexmap.algos.scorer import DistrictAlignmentScorer
from hexmap.data.hex_grid import HexGrid

Observer = Callable[[str, dict], Any]

POP_COL = "population"


# ----------------------------
# Config
# ----------------------------
@dataclass
class PlacementConfig:
    n_runs: int = 25
    max_bursts: Optional[int] = None     # default 300 + round(25 * sqrt(n))
    burst_size: Optional[int] = None     # default round(2 * sqrt(n))
    pop_tol: Optional[float] = None      # default 1.3 * n**1.075 / n_cells

    # objective weights
    compactness_weight: float = 1.0
    alignment_weight: float = 2.0

    seed: int = 42
    n_jobs: int = 1
    verbose: bool = False

    def resolved(self, n_distr: int, n_cells: int) -> "PlacementConfig":
        max_bursts = self.max_bursts if self.max_bursts is not None else 300 + round(math.sqrt(n_distr) * 25)
        burst_size = self.burst_size if self.burst_size is not None else max(1, round(2 * math.sqrt(n_distr)))
        pop_tol = self.pop_tol if self.pop_tol is not None else 1.3 * n_distr ** 1.075 / n_cells
        return PlacementConfig(
            n_runs=int(self.n_runs),
            max_bursts=int(max_bursts),
            burst_size=int(burst_size),
            pop_tol=float(pop_tol),
            compactness_weight=self.compactness_weight,
            alignment_weight=self.alignment_weight,
            seed=int(self.seed),
            n_jobs=int(self.n_jobs),
            verbose=self.verbose,
        )


@dataclass
class PlacementResult:
    labels: np.ndarray               # raw group ids 1..n (not yet matched to targets)
    score: float
    best_run: int
    run_scores: list[float] = field(default_factory=list)


# ----------------------------
# Graph + objective
# ----------------------------
def grid_graph(grid: HexGrid) -> Graph:
    """Cell adjacency as a gerrychain Graph with unit population per cell."""
    g = nx.Graph()
    g.add_nodes_from(range(grid.n_cells), **{POP_COL: 1})
    for i, nbrs in enumerate(grid.adj):
        for j in nbrs:
            if i < j:
                g.add_edge(i, j)
    return Graph.from_networkx(g)


def partition_labels(partition, n_cells: int) -> np.ndarray:
    return np.array([partition.assignment[i] for i in range(n_cells)], dtype=int)


class PlacementObjective:
    """compactness_weight * frac_kept + alignment_weight * alignment score."""

    def __init__(self, scorer: DistrictAlignmentScorer, compactness_weight: float = 1.0, alignment_weight: float = 2.0):
        self.scorer = scorer
        self.compactness_weight = float(compactness_weight)
        self.alignment_weight = float(alignment_weight)

    def score_labels(self, labels: np.ndarray) -> float:
        return (
            self.compactness_weight * self.scorer.frac_kept(labels)
            + self.alignment_weight * self.scorer(labels)
        )

    def __call__(self, partition) -> float:
        return self.score_labels(partition_labels(partition, self.scorer.n_cells))


# ----------------------------
# One run
# ----------------------------
def _run_once(graph: Graph, objective: PlacementObjective, cfg: PlacementConfig, n_distr: int, run: int):
    # gerrychain draws from the module-level random state
    random.seed(cfg.seed + run)

    n_cells = graph.number_of_nodes()
    ideal = n_cells / n_distr

    assignment = recursive_tree_part(
        graph,
        list(range(1, n_distr + 1)),
        ideal,
        POP_COL,
        cfg.pop_tol,
        node_repeats=1,
    )
    initial = Partition(
        graph,
        assignment,
        updaters={POP_COL: updaters.Tally(POP_COL, alias=POP_COL)},
    )

    proposal = partial(
        recom,
        pop_col=POP_COL,
        pop_target=ideal,
        epsilon=cfg.pop_tol,
        node_repeats=1,
    )
    optimizer = SingleMetricOptimizer(
        proposal=proposal,
        constraints=[within_percent_of_ideal_population(initial, cfg.pop_tol)],
        initial_state=initial,
        optimization_metric=objective,
        maximize=True,
    )
    for _ in optimizer.short_bursts(cfg.burst_size, cfg.max_bursts):
        pass

    return run, partition_labels(optimizer.best_part, n_cells), float(optimizer.best_score)


# ----------------------------
# Search
# ----------------------------
def place_districts(
    grid: HexGrid,
    scorer: DistrictAlignmentScorer,
    cfg: PlacementConfig | None = None,
    *,
    observer: Optional[Observer] = None,
) -> PlacementResult:
    """
    Run cfg.n_runs independent searches (tree-partition start + short bursts)
    and keep the highest-scoring plan. Ties go to the lowest run index.
    """
    if grid.n_distr < 2:
        raise ValueError("place_districts needs n_distr >= 2; dissolve all cells when n == 1.")

    cfg = (cfg or PlacementConfig()).resolved(grid.n_distr, grid.n_cells)
    if cfg.n_runs < 1:
        raise ValueError(f"n_runs must be >= 1 (got {cfg.n_runs})")
    graph = grid_graph(grid)
    objective = PlacementObjective(scorer, cfg.compactness_weight, cfg.alignment_weight)

    if cfg.verbose:
        print(
            f"[place] runs={cfg.n_runs} bursts={cfg.max_bursts}x{cfg.burst_size} "
            f"pop_tol={cfg.pop_tol:.3f} cells={grid.n_cells} districts={grid.n_distr}",
            flush=True,
        )

    results: dict[int, tuple[np.ndarray, float]] = {}

    def _done(run: int, labels: np.ndarray, score: float) -> None:
        results[run] = (labels, score)
        if cfg.verbose:
            print(f"[place] run={run + 1}/{cfg.n_runs} score={score:.6f}", flush=True)
        if observer is not None:
            observer("run_done", {"run": run, "labels": labels.copy(), "score": score})

    if cfg.n_jobs > 1:
        with ProcessPoolExecutor(max_workers=cfg.n_jobs) as pool:
            futures = [
                pool.submit(_run_once, graph, objective, cfg, grid.n_distr, run)
                for run in range(cfg.n_runs)
            ]
            for fut in as_completed(futures):
                _done(*fut.result())
    else:
        for run in range(cfg.n_runs):
            _done(*_run_once(graph, objective, cfg, grid.n_distr, run))

    run_scores = [results[r][1] for r in range(cfg.n_runs)]
    best_run = int(np.argmax(run_scores))

    if cfg.verbose:
        print(f"[place] best run={best_run + 1} score={run_scores[best_run]:.6f}", flush=True)

    return PlacementResult(
        labels=results[best_run][0],
        score=run_scores[best_run],
        best_run=best_run,
        run_scores=run_scores,
    )
