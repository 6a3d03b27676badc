from __future__ import annotations

import numpy as np
import geopandas as gpd
from shapely.ops import polylabel

from hexmap.algos.scorer import DistrictAlignmentScorer
from hexmap.data.hex_grid import HexGrid, TargetDistricts


def label_point(geom):
    """Pole of inaccessibility of the largest polygon part (always inside it)."""
    if geom.geom_type == "MultiPolygon":
        geom = max(geom.geoms, key=lambda g: g.area)
    tol = max(np.sqrt(geom.area) * 1e-3, 1e-9)
    return polylabel(geom, tolerance=tol)


def _finish(out: gpd.GeoDataFrame, targets: TargetDistricts | None) -> gpd.GeoDataFrame:
    out = out.sort_values("district").reset_index(drop=True)
    if targets is not None:
        out["label"] = [targets.labels[int(d) - 1] for d in out["district"]]
    else:
        out["label"] = out["district"]
    out["geom_label"] = gpd.GeoSeries([label_point(g) for g in out.geometry], crs=out.crs)
    return out[["district", "label", "geometry", "geom_label"]]


def dissolve_single(grid: HexGrid, targets: TargetDistricts | None = None) -> gpd.GeoDataFrame:
    """n == 1: every cell belongs to district 1."""
    gdf = gpd.GeoDataFrame({"district": np.ones(grid.n_cells, dtype=int)}, geometry=grid.cells.values, crs=grid.cells.crs)
    return _finish(gdf.dissolve(by="district", as_index=False), targets)


def assemble_districts(
    labels,
    scorer: DistrictAlignmentScorer,
    grid: HexGrid,
    targets: TargetDistricts | None = None,
) -> gpd.GeoDataFrame:
    """
    Match the winning plan's raw groups to the real districts and dissolve the
    cells into one polygon per district.

    Returns a GeoDataFrame with columns district (1..n), label (original
    district id), geometry and geom_label.
    """
    bijection = scorer.bijection_for(labels)
    final = bijection.relabel(labels)

    gdf = gpd.GeoDataFrame({"district": final}, geometry=grid.cells.values, crs=grid.cells.crs)
    out = gdf.dissolve(by="district", as_index=False)
    if len(out) != scorer.n_distr:
        raise ValueError(f"Assembled {len(out)} districts; expected {scorer.n_distr}.")
    return _finish(out, targets)


def cell_districts(labels, scorer: DistrictAlignmentScorer) -> np.ndarray:
    """Per-cell true district id for a raw plan."""
    return scorer.bijection_for(labels).relabel(labels)
