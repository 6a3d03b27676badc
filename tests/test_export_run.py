import json

import geopandas as gpd
import pandas as pd

from export_run import export_run
from hexmap.algos.make_hex_map import make_hex_map


def test_export_single_district_run(tmp_path, outline):
    result = make_hex_map(gpd.GeoSeries([outline]), outline)

    export_run(result, tmp_path / "run", title="one", meta={"state": "XX"})

    run_dir = tmp_path / "run"
    cells = gpd.read_file(run_dir / "hex_cells.geojson")
    assert len(cells) == result.grid.n_cells
    assert set(cells["district"]) == {1}
    assert json.loads(cells["neighbors"].iloc[0]) == result.grid.adj[0]

    districts = gpd.read_file(run_dir / "districts.geojson")
    assert districts["district"].tolist() == [1]

    stats = pd.read_csv(run_dir / "district_stats.csv")
    assert stats["n_cells"].tolist() == [result.grid.n_cells]
    assert stats["area_share"].tolist() == [1.0]

    meta = json.loads((run_dir / "meta.json").read_text())
    assert meta["state"] == "XX"
    assert meta["n_distr"] == 1
    assert "score" not in meta
    assert (run_dir / "map.png").exists()


def test_export_grid_only_run(tmp_path, quadrants, outline):
    result = make_hex_map(quadrants, outline, assign=False)

    export_run(result, tmp_path, title="grid")

    assert (tmp_path / "hex_cells.geojson").exists()
    assert not (tmp_path / "districts.geojson").exists()
    assert not (tmp_path / "district_stats.csv").exists()
