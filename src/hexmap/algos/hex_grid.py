from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import geopandas as gpd
import shapely

from hexmap.algos.adjacency import connect_components, overlap_adjacency
from hexmap.data.hex_grid import HexGrid, TargetDistricts


class GridConstructionError(ValueError):
    """The boundary/district geometry cannot support the requested grid."""


# ----------------------------
# Config
# ----------------------------
@dataclass
class HexGridConfig:
    hex_per_district: float = 5.0
    inflation: float = 1.05

    # sizing loop
    start_inflation: float = 0.75
    inflation_step: float = 1.1
    sliver_frac: float = 0.25      # drop clipped cells below this share of the median area
    max_sizing_iters: int = 100

    # coordinate systems (ignored when inputs carry no CRS)
    working_crs: int = 3857
    equal_area_crs: int = 5070

    district_buffer: float = 2e3   # closes precision gaps between real districts
    district_buffer_frac: float = 0.01  # cap: share of sqrt(median district area)
    area_bucket: float = 3e8       # bucket width for the typical cell area

    verbose: bool = False


# ----------------------------
# Geometry helpers
# ----------------------------
def _as_geoseries(geoms, crs=None) -> gpd.GeoSeries:
    if isinstance(geoms, gpd.GeoDataFrame):
        return geoms.geometry.reset_index(drop=True)
    if isinstance(geoms, gpd.GeoSeries):
        return geoms.reset_index(drop=True)
    if isinstance(geoms, shapely.Geometry):
        return gpd.GeoSeries([geoms], crs=crs)
    return gpd.GeoSeries(list(geoms), crs=crs)


def _polygonal(geoms: np.ndarray) -> np.ndarray:
    """Keep only the areal part of each geometry (clipping can leave stray lines/points)."""
    out = []
    for g in geoms:
        if g is None or g.is_empty:
            out.append(shapely.Polygon())
        elif g.geom_type in ("Polygon", "MultiPolygon"):
            out.append(g)
        elif g.geom_type == "GeometryCollection":
            parts = [p for p in g.geoms if p.geom_type in ("Polygon", "MultiPolygon")]
            out.append(shapely.union_all(parts) if parts else shapely.Polygon())
        else:
            out.append(shapely.Polygon())
    return np.array(out, dtype=object)


def hex_tiles(bounds, n_dim) -> np.ndarray:
    """
    Flat-topped regular hexagons covering `bounds`.

    n_dim = (columns, rows) sets the resolution: each hexagon has the area of
    one cell of an n_dim[0] x n_dim[1] split of the bounding box.
    """
    minx, miny, maxx, maxy = bounds
    w, h = maxx - minx, maxy - miny
    nx, ny = int(n_dim[0]), int(n_dim[1])

    cell_area = w * h / (nx * ny)
    r = np.sqrt(2.0 * cell_area / (3.0 * np.sqrt(3.0)))  # circumradius
    dx = 1.5 * r
    dy = np.sqrt(3.0) * r

    cols = np.arange(int(np.ceil(w / dx)) + 2)
    rows = np.arange(-1, int(np.ceil(h / dy)) + 2)
    cx, cy = np.meshgrid(minx + cols * dx, miny + rows * dy)
    cy = cy + np.where(cols % 2 == 1, dy / 2.0, 0.0)[None, :]
    cx, cy = cx.ravel(), cy.ravel()

    ang = np.deg2rad(np.arange(0, 360, 60))
    vx = cx[:, None] + r * np.cos(ang)[None, :]
    vy = cy[:, None] + r * np.sin(ang)[None, :]
    ring = np.stack([vx, vy], axis=-1)
    ring = np.concatenate([ring, ring[:, :1, :]], axis=1)
    return shapely.polygons(ring)


def size_hex_tiles(outline, n_hex: int, a_ratio: float, cfg: HexGridConfig) -> np.ndarray:
    """
    Grow the tiling resolution until more than `n_hex` non-sliver cells
    survive clipping to `outline`.
    """
    minx, miny, maxx, maxy = outline.bounds
    if not (maxx > minx and maxy > miny):
        raise GridConstructionError(
            f"Boundary has a degenerate bounding box {outline.bounds}; cannot tile it with hexagons."
        )

    cuml_infl = cfg.start_inflation
    n_found = 0
    for attempt in range(1, cfg.max_sizing_iters + 1):
        n_dim = np.floor(np.sqrt(cuml_infl * n_hex * np.array([1.0 / a_ratio, a_ratio])))
        n_dim = np.maximum(n_dim, 1).astype(int)

        tiles = hex_tiles(outline.bounds, n_dim)
        tiles = tiles[shapely.intersects(tiles, outline)]
        clipped = _polygonal(shapely.intersection(tiles, outline))
        areas = shapely.area(clipped)
        clipped, areas = clipped[areas > 0], areas[areas > 0]

        if len(areas) > 0:
            base_area = float(np.median(areas))
            clipped = clipped[areas / base_area >= cfg.sliver_frac]
        n_found = len(clipped)

        if n_found == 0:
            raise GridConstructionError(
                "No hexagon survived clipping to the boundary: the boundary/district geometry is too "
                f"small or too thin for the requested density (n_hex={n_hex}, grid={n_dim.tolist()}, "
                f"hex_per_district={cfg.hex_per_district}, inflation={cfg.inflation}, "
                f"sliver_frac={cfg.sliver_frac})."
            )

        if cfg.verbose:
            print(
                f"[hexgrid] attempt={attempt} grid={n_dim[0]}x{n_dim[1]} cells={n_found} target>{n_hex}",
                flush=True,
            )

        if n_found > n_hex:
            return clipped
        cuml_infl *= cfg.inflation_step

    raise GridConstructionError(
        f"Hex sizing did not exceed {n_hex} cells after {cfg.max_sizing_iters} attempts "
        f"(last count={n_found}, hex_per_district={cfg.hex_per_district}, inflation={cfg.inflation}, "
        f"inflation_step={cfg.inflation_step}). Lower the density or simplify the boundary."
    )


def relax_cells(tiles: np.ndarray, outline) -> np.ndarray:
    """Voronoi cells of the tile centroids, clipped to the boundary, in reading order."""
    pts = shapely.multipoints(shapely.get_coordinates(shapely.centroid(tiles)))
    vor = shapely.voronoi_polygons(pts, extend_to=outline)
    cells = _polygonal(shapely.intersection(shapely.get_parts(vor), outline))
    cells = cells[shapely.area(cells) > 0]
    if len(cells) < len(tiles):
        raise GridConstructionError(
            f"Voronoi relaxation kept {len(cells)} of {len(tiles)} cells; a tile centroid fell "
            "outside the boundary. Raise hex_per_district or simplify the boundary."
        )

    c = shapely.get_coordinates(shapely.centroid(cells))
    order = np.lexsort((c[:, 0], -c[:, 1]))  # north to south, then west to east
    return cells[order]


def typical_cell_area(area: np.ndarray, bucket: float) -> float:
    """Most frequent rounded area bucket (ties go to the smaller bucket)."""
    if len(area) == 0:
        return 0.0
    vals, counts = np.unique(np.round(np.asarray(area) / bucket), return_counts=True)
    return float(vals[int(np.argmax(counts))])


def district_buffer(shp: gpd.GeoSeries, cfg: HexGridConfig) -> float:
    """
    Gap-closing buffer for district adjacency, in the units of `shp`.

    cfg.district_buffer is capped at cfg.district_buffer_frac * sqrt(median
    district area) so small or CRS-less geometries do not drown in it.
    """
    area = shp.area.to_numpy(dtype=float)
    area = area[area > 0]
    if len(area) == 0:
        return 0.0
    return float(min(cfg.district_buffer, cfg.district_buffer_frac * np.sqrt(np.median(area))))


def build_target_districts(shp: gpd.GeoSeries, cfg: HexGridConfig, labels=None) -> TargetDistricts:
    n = len(shp)
    adj = overlap_adjacency(shp.values, district_buffer(shp, cfg))

    ea = shp.to_crs(cfg.equal_area_crs) if shp.crs is not None else shp
    centroids = ea.centroid
    area = ea.area.to_numpy(dtype=float)
    total = float(area.sum())

    return TargetDistricts(
        ids=np.arange(1, n + 1),
        labels=list(labels) if labels is not None else list(range(1, n + 1)),
        coords=np.column_stack([centroids.x.to_numpy(), centroids.y.to_numpy()]),
        adj=adj,
        weight=area / total if total > 0 else np.full(n, 1.0 / max(n, 1)),
    )


# ----------------------------
# Builder
# ----------------------------
def build_hex_grid(districts, outline, cfg: HexGridConfig | None = None, labels=None) -> tuple[HexGrid, TargetDistricts]:
    """
    Partition `outline` into near-uniform hexagonal cells, about
    cfg.hex_per_district per district, and collect the target district data.

    districts: one polygon per district (GeoSeries/GeoDataFrame/list), ids 1..n
      in input order.
    outline: the enclosing boundary (single geometry or GeoSeries, unioned).

    Inputs without a CRS are taken as planar metres and are not reprojected.
    """
    cfg = cfg or HexGridConfig()

    shp = _as_geoseries(districts)
    outline_s = _as_geoseries(outline, crs=shp.crs)
    if (shp.crs is None) != (outline_s.crs is None):
        raise ValueError("districts and outline must both carry a CRS, or neither.")
    if shp.crs is not None:
        shp = shp.to_crs(cfg.working_crs)
        outline_s = outline_s.to_crs(cfg.working_crs)

    n_distr = len(shp)
    if n_distr == 0:
        raise GridConstructionError("No district geometries supplied.")
    if labels is not None and len(labels) != n_distr:
        raise ValueError(f"labels length ({len(labels)}) != districts length ({n_distr})")

    outline_geom = outline_s.union_all()
    if outline_geom.is_empty or outline_geom.area <= 0:
        raise GridConstructionError("Boundary geometry is empty or has zero area.")

    # recenter districts on the outline
    src = shp.union_all().centroid
    dst = outline_geom.centroid
    shp = shp.translate(xoff=dst.x - src.x, yoff=dst.y - src.y)

    minx, miny, maxx, maxy = shp.total_bounds
    a_ratio = (maxy - miny) / (maxx - minx) if maxx > minx else np.inf
    if not np.isfinite(a_ratio) or a_ratio <= 0:
        raise GridConstructionError(
            f"District geometry has a degenerate bounding box {shp.total_bounds.tolist()}."
        )

    n_hex = int(round(n_distr * cfg.hex_per_district * cfg.inflation))

    tiles = size_hex_tiles(outline_geom, n_hex, a_ratio, cfg)
    cells = gpd.GeoSeries(relax_cells(tiles, outline_geom), crs=outline_s.crs)
    if cells.crs is not None:
        cells = cells.to_crs(cfg.equal_area_crs)

    grid = HexGrid.from_cells(cells, n_distr, n_hex=n_hex)

    try:
        adj, added = connect_components(grid.adj, grid.centroids)
    except ValueError as e:
        raise GridConstructionError(
            f"Connectivity repair failed: {e} (n_hex={n_hex}, n_cells={grid.n_cells}, "
            f"hex_per_district={cfg.hex_per_district})"
        ) from e
    grid.adj = adj
    grid.added_edges = added
    grid.base_size = typical_cell_area(grid.area, cfg.area_bucket)

    if cfg.verbose:
        print(
            f"[hexgrid] cells={grid.n_cells} target={n_hex} districts={n_distr} "
            f"repaired_edges={len(added)} base_size={grid.base_size:g}",
            flush=True,
        )

    targets = build_target_districts(shp, cfg, labels=labels)
    return grid, targets
