from __future__ import annotations

from collections import deque

import numpy as np
import shapely
from scipy.spatial.distance import cdist


# ----------------------------
# Adjacency from polygons
# ----------------------------

def _pairs_to_adj(n: int, left: np.ndarray, right: np.ndarray) -> list[list[int]]:
    neighbors: list[set[int]] = [set() for _ in range(n)]
    for i, j in zip(left.tolist(), right.tolist()):
        if i == j:
            continue
        neighbors[i].add(j)
        neighbors[j].add(i)
    return [sorted(s) for s in neighbors]


def _candidate_pairs(geoms: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    tree = shapely.STRtree(geoms)
    left, right = tree.query(geoms, predicate="intersects")
    keep = left < right
    return left[keep], right[keep]


def rook_adjacency(geoms) -> list[list[int]]:
    """
    Shared-border adjacency: i and j are neighbors when their intersection has
    positive length. Corner (point) contacts are not neighbors.
    """
    geoms = np.asarray(geoms, dtype=object)
    if len(geoms) == 0:
        return []
    left, right = _candidate_pairs(geoms)
    if len(left) == 0:
        return [[] for _ in range(len(geoms))]

    shared = shapely.length(shapely.intersection(geoms[left], geoms[right])) > 0
    return _pairs_to_adj(len(geoms), left[shared], right[shared])


def overlap_adjacency(geoms, buffer: float) -> list[list[int]]:
    """
    Tolerant adjacency for real district shapes whose shared borders do not
    line up exactly. Each shape is grown by `buffer`; two shapes are neighbors
    when the grown shapes overlap by more than 4 * buffer**2, which is more
    than a lone corner contact can produce.
    """
    if buffer <= 0:
        return rook_adjacency(geoms)

    geoms = np.asarray(geoms, dtype=object)
    if len(geoms) == 0:
        return []
    grown = shapely.buffer(geoms, buffer)
    left, right = _candidate_pairs(grown)
    if len(left) == 0:
        return [[] for _ in range(len(geoms))]

    overlap = shapely.area(shapely.intersection(grown[left], grown[right]))
    keep = overlap > 4.0 * buffer ** 2
    return _pairs_to_adj(len(geoms), left[keep], right[keep])


# ----------------------------
# Components + repair
# ----------------------------

def graph_components(adj: list[list[int]]) -> list[list[int]]:
    """Connected components of the whole graph. Largest-first."""
    n = len(adj)
    seen = np.zeros(n, dtype=bool)
    comps: list[list[int]] = []

    for start in range(n):
        if seen[start]:
            continue
        q = deque([start])
        seen[start] = True
        comp: list[int] = []
        while q:
            x = q.popleft()
            comp.append(x)
            for y in adj[x]:
                if not seen[y]:
                    seen[y] = True
                    q.append(y)
        comps.append(sorted(comp))

    comps.sort(key=len, reverse=True)
    return comps


def add_edge(adj: list[list[int]], i: int, j: int) -> None:
    i, j = int(i), int(j)
    if i == j:
        return
    if j not in adj[i]:
        adj[i].append(j)
        adj[i].sort()
    if i not in adj[j]:
        adj[j].append(i)
        adj[j].sort()


def suggest_component_connection(adj: list[list[int]], centroids: np.ndarray) -> tuple[int, int] | None:
    """
    Closest pair of centroids joining the smallest component to the rest of
    the graph. None when the graph is already connected.
    """
    comps = graph_components(adj)
    if len(comps) <= 1:
        return None

    comp = np.array(comps[-1], dtype=int)
    inside = np.zeros(len(adj), dtype=bool)
    inside[comp] = True
    outside = np.where(~inside)[0]

    d = cdist(centroids[comp], centroids[outside])
    if d.size == 0 or not np.isfinite(d).any():
        raise ValueError(
            f"No connecting edge found for component of {len(comp)} cell(s): {comp.tolist()[:25]}"
        )

    d = np.where(np.isfinite(d), d, np.inf)
    k = int(np.argmin(d))
    a, b = divmod(k, len(outside))
    return int(comp[a]), int(outside[b])


def connect_components(adj: list[list[int]], centroids: np.ndarray) -> tuple[list[list[int]], list[tuple[int, int]]]:
    """Add nearest-pair edges until the graph is a single component."""
    adj = [list(nbrs) for nbrs in adj]
    added: list[tuple[int, int]] = []
    while True:
        edge = suggest_component_connection(adj, centroids)
        if edge is None:
            break
        add_edge(adj, *edge)
        added.append(edge)
    return adj, added
