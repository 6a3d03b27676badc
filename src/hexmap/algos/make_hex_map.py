from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import geopandas as gpd

from hexmap.algos.assemble import assemble_districts, cell_districts, dissolve_single
from hexmap.algos.hex_grid import HexGridConfig, build_hex_grid
from hexmap.algos.placement import Observer, PlacementConfig, PlacementResult, place_districts
from hexmap.algos.scorer import DistrictAlignmentScorer
from hexmap.data.hex_grid import HexGrid, TargetDistricts


@dataclass
class HexMapResult:
    grid: HexGrid
    targets: TargetDistricts
    districts: Optional[gpd.GeoDataFrame] = None   # district, label, geometry, geom_label
    placement: Optional[PlacementResult] = None
    cell_district: Optional[list[int]] = None      # true district id per cell


def select_state(
    gdf: gpd.GeoDataFrame,
    state: str | None,
    *,
    state_col: str = "state",
    district_col: str | None = "district",
    outlines: gpd.GeoDataFrame | None = None,
) -> tuple[gpd.GeoSeries, gpd.GeoSeries, list]:
    """
    Pick one region's districts (ordered by district_col) and its outline.
    Without `outlines`, the outline is the union of the region's districts.
    """
    sub = gdf
    if state is not None:
        if state_col not in gdf.columns:
            raise KeyError(f"state_col='{state_col}' not found. Available columns: {list(gdf.columns)[:50]}")
        sub = gdf[gdf[state_col].astype(str) == str(state)]
        if len(sub) == 0:
            raise KeyError(f"No districts found for {state_col}='{state}'.")

    if district_col and district_col in sub.columns:
        sub = sub.sort_values(district_col)
        labels = sub[district_col].tolist()
    else:
        labels = list(range(1, len(sub) + 1))

    shp = sub.geometry.reset_index(drop=True)

    if outlines is not None:
        out = outlines
        if state is not None:
            if state_col not in outlines.columns:
                raise KeyError(f"Outline file missing '{state_col}'. Available: {list(outlines.columns)[:50]}")
            out = outlines[outlines[state_col].astype(str) == str(state)]
            if len(out) == 0:
                raise KeyError(f"No outline found for {state_col}='{state}'.")
        outline = gpd.GeoSeries([out.geometry.union_all()], crs=out.crs)
        if shp.crs is not None and outline.crs is not None and outline.crs != shp.crs:
            outline = outline.to_crs(shp.crs)
    else:
        outline = gpd.GeoSeries([shp.union_all()], crs=shp.crs)

    return shp, outline, labels


def make_hex_map(
    districts,
    outline,
    *,
    labels=None,
    grid_cfg: HexGridConfig | None = None,
    place_cfg: PlacementConfig | None = None,
    assign: bool = True,
    observer: Optional[Observer] = None,
) -> HexMapResult:
    """
    Build the hex grid for one region and, when `assign`, place the districts on it.

    observer(event, payload) is called at "grid_built", "run_done" and
    "assembled"; it is never needed for the result.
    """
    grid, targets = build_hex_grid(districts, outline, grid_cfg, labels=labels)
    if observer is not None:
        observer("grid_built", {"grid": grid, "targets": targets})

    result = HexMapResult(grid=grid, targets=targets)
    if not assign:
        return result

    if grid.n_distr == 1:
        result.districts = dissolve_single(grid, targets)
        result.cell_district = [1] * grid.n_cells
    else:
        scorer = DistrictAlignmentScorer(grid, targets)
        placement = place_districts(grid, scorer, place_cfg, observer=observer)
        result.placement = placement
        result.districts = assemble_districts(placement.labels, scorer, grid, targets)
        result.cell_district = cell_districts(placement.labels, scorer).tolist()

    if observer is not None:
        observer("assembled", {"districts": result.districts, "cell_district": result.cell_district})
    return result
