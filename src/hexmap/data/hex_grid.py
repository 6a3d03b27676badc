from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator

import numpy as np
import geopandas as gpd

from hexmap.algos.adjacency import rook_adjacency


@dataclass(frozen=True)
class HexCell:
    cell_id: int
    geometry: object  # shapely Polygon / MultiPolygon
    area: float
    neighbors: tuple[int, ...]


@dataclass
class HexGrid:
    """
    Cells of the approximation grid plus their adjacency.

    Built once per region by build_hex_grid(); treat as read-only afterwards.
    Coordinates are in the equal-area CRS of `cells` (or planar units when the
    inputs carried no CRS).
    """
    cells: gpd.GeoSeries
    area: np.ndarray          # (N,)
    centroids: np.ndarray     # (N,2)
    adj: list[list[int]]      # neighbors as indices
    n_distr: int
    n_hex: int = 0            # requested cell count
    base_size: float = 0.0    # typical cell area bucket (informational)
    added_edges: list[tuple[int, int]] = field(default_factory=list)

    @classmethod
    def from_cells(
        cls,
        cells: gpd.GeoSeries,
        n_distr: int,
        adj: list[list[int]] | None = None,
        **kwargs,
    ) -> "HexGrid":
        cells = cells.reset_index(drop=True)
        centroids = cells.centroid
        if adj is None:
            adj = rook_adjacency(cells.values)
        return cls(
            cells=cells,
            area=cells.area.to_numpy(dtype=float),
            centroids=np.column_stack([centroids.x.to_numpy(), centroids.y.to_numpy()]),
            adj=adj,
            n_distr=int(n_distr),
            **kwargs,
        )

    @property
    def n_cells(self) -> int:
        return len(self.adj)

    def cell(self, i: int) -> HexCell:
        return HexCell(
            cell_id=int(i),
            geometry=self.cells.iloc[i],
            area=float(self.area[i]),
            neighbors=tuple(int(j) for j in self.adj[i]),
        )

    def iter_cells(self) -> Iterator[HexCell]:
        for i in range(self.n_cells):
            yield self.cell(i)

    def edges(self) -> np.ndarray:
        """Undirected edge list (E,2) with u < v."""
        pairs = [(i, j) for i, nbrs in enumerate(self.adj) for j in nbrs if i < j]
        if not pairs:
            return np.zeros((0, 2), dtype=int)
        return np.array(sorted(set(pairs)), dtype=int)


@dataclass
class TargetDistricts:
    """The real districts the grid is matched against, ids 1..n in input order."""
    ids: np.ndarray           # (n,) 1..n
    labels: list              # original district identifiers
    coords: np.ndarray        # (n,2) centroids, same CRS as the grid
    adj: list[list[int]]      # neighbors as 0-based indices
    weight: np.ndarray        # (n,) area share, sums to 1

    @property
    def n(self) -> int:
        return len(self.ids)

    @property
    def degree(self) -> np.ndarray:
        return np.array([len(set(a) - {i}) for i, a in enumerate(self.adj)], dtype=int)
