from pathlib import Path
from datetime import datetime
import json
import pandas as pd
import geopandas as gpd
import matplotlib.pyplot as plt

from hexmap.algos.make_hex_map import HexMapResult


def export_run(
    result: HexMapResult,
    run_dir: Path,
    title: str,
    meta: dict | None = None,
    web_epsg: int = 4326,
):
    run_dir.mkdir(parents=True, exist_ok=True)
    grid = result.grid

    # ---- Hex cells (grid + adjacency, for reuse/debugging) ----
    cells = gpd.GeoDataFrame(
        {
            "cell_id": range(grid.n_cells),
            "area": grid.area,
            "neighbors": [json.dumps(list(c.neighbors)) for c in grid.iter_cells()],
        },
        geometry=grid.cells.values,
        crs=grid.cells.crs,
    )
    if result.cell_district is not None:
        cells["district"] = pd.Series(result.cell_district, index=cells.index).astype(int)

    # ---- Districts ----
    districts = None
    if result.districts is not None:
        districts = result.districts.copy()
        districts["label_x"] = districts["geom_label"].x
        districts["label_y"] = districts["geom_label"].y
        districts = districts.drop(columns=["geom_label"])

        # District stats (sidebar)
        stats = (
            cells.groupby("district")
            .agg(n_cells=("cell_id", "size"), area=("area", "sum"))
            .reset_index()
        )
        stats["area_share"] = stats["area"] / stats["area"].sum()
        stats = stats.merge(districts[["district", "label"]], on="district", how="left")
        stats.to_csv(run_dir / "district_stats.csv", index=False)

    # ---- GeoJSON exports ----
    if cells.crs is not None:
        cells_web = cells.to_crs(epsg=web_epsg)
    else:
        cells_web = cells
    cells_web.to_file(run_dir / "hex_cells.geojson", driver="GeoJSON")

    if districts is not None:
        if districts.crs is not None:
            labels_web = gpd.GeoSeries(
                gpd.points_from_xy(districts["label_x"], districts["label_y"]), crs=districts.crs
            ).to_crs(epsg=web_epsg)
            districts_web = districts.to_crs(epsg=web_epsg)
            districts_web["label_x"] = labels_web.x.values
            districts_web["label_y"] = labels_web.y.values
        else:
            districts_web = districts
        districts_web.to_file(run_dir / "districts.geojson", driver="GeoJSON")

    # ---- Meta ----
    meta_out = {
        "built_at": datetime.now().isoformat(),
        "title": title,
        "n_distr": int(grid.n_distr),
        "n_hex_target": int(grid.n_hex),
        "n_cells": int(grid.n_cells),
        "base_size": float(grid.base_size),
        "repaired_edges": [list(map(int, e)) for e in grid.added_edges],
        "crs": str(grid.cells.crs) if grid.cells.crs is not None else None,
    }
    if result.placement is not None:
        meta_out["score"] = float(result.placement.score)
        meta_out["best_run"] = int(result.placement.best_run)
        meta_out["run_scores"] = [float(s) for s in result.placement.run_scores]
    if meta:
        meta_out.update(meta)
    (run_dir / "meta.json").write_text(json.dumps(meta_out, indent=2))

    # ---- PNG preview ----
    fig, ax = plt.subplots(figsize=(10, 10))
    if districts is not None:
        cells.plot(column="district", cmap="tab20", categorical=True, linewidth=0.3, edgecolor="white", ax=ax)
        districts.boundary.plot(ax=ax, color="black", linewidth=1.0)
        for _, r in districts.iterrows():
            ax.annotate(str(r["label"]), (r["label_x"], r["label_y"]), ha="center", va="center", fontsize=8)
    else:
        cells.plot(facecolor="none", edgecolor="black", linewidth=0.4, ax=ax)
    ax.set_title(title)
    ax.axis("off")
    plt.tight_layout()
    fig.savefig(run_dir / "map.png", dpi=200)
    plt.close(fig)

    print(f"✅ Exported run to: {run_dir}")
    print(f"   - hex_cells.geojson (cells + neighbors)")
    if districts is not None:
        print(f"   - districts.geojson (district polygons + label points)")
        print(f"   - district_stats.csv")
