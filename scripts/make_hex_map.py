import argparse
import yaml
from pathlib import Path
from datetime import datetime

import geopandas as gpd

from export_run import export_run

from hexmap.algos.hex_grid import HexGridConfig
from hexmap.algos.make_hex_map import make_hex_map, select_state
from hexmap.algos.placement import PlacementConfig
from hexmap.viz.frame_recorder import FrameRecorder

"""
Builds a hex map for one region (e.g. one state) from a district file.

example usage from repo root:
python3 scripts/make_hex_map.py --config config.yaml --state NH
python3 scripts/make_hex_map.py --config config.yaml --state NH --record --runs 5
"""


def _state_cfg(cfg: dict, state: str | None) -> dict:
    return ((cfg.get("states", {}) or {}).get(state, {}) or {}) if state else {}


def _merged(cfg: dict, state: str | None, section: str) -> dict:
    base = (cfg.get(section, {}) or {}).copy()
    base.update((_state_cfg(cfg, state).get(section, {}) or {}))
    return base


def _grid_config(cfg: dict, state: str | None) -> HexGridConfig:
    g = _merged(cfg, state, "grid")
    return HexGridConfig(
        hex_per_district=float(g.get("hex_per_district", 5)),
        inflation=float(g.get("inflation", 1.05)),
        max_sizing_iters=int(g.get("max_sizing_iters", 100)),
        working_crs=int(g.get("working_crs", 3857)),
        equal_area_crs=int(g.get("equal_area_crs", 5070)),
        district_buffer=float(g.get("district_buffer", 2e3)),
        district_buffer_frac=float(g.get("district_buffer_frac", 0.01)),
        verbose=bool(g.get("verbose", True)),
    )


def _placement_config(cfg: dict, state: str | None, args) -> PlacementConfig:
    p = _merged(cfg, state, "placement")
    n_runs = args.runs if args.runs is not None else int(p.get("n_runs", 25))
    return PlacementConfig(
        n_runs=int(n_runs),
        max_bursts=p.get("max_bursts"),
        burst_size=p.get("burst_size"),
        pop_tol=p.get("pop_tol"),
        compactness_weight=float(p.get("compactness_weight", 1.0)),
        alignment_weight=float(p.get("alignment_weight", 2.0)),
        seed=int(args.seed if args.seed is not None else p.get("seed", 42)),
        n_jobs=int(p.get("n_jobs", 1)),
        verbose=bool(p.get("verbose", True)),
    )


def _resolve_path(cfg: dict, cli_value: str | None, key: str, required: bool = True) -> Path | None:
    raw = cli_value or (cfg.get("data", {}) or {}).get(key)
    if not raw:
        if required:
            raise KeyError(f"No {key} given. Pass --{key.replace('_path', '')} or set data.{key} in the config.")
        return None
    path = Path(raw).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Missing {key}: {path}")
    return path


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="config.yaml")
    ap.add_argument("--state", default=None, help="Region key in data.state_col; omit to use the whole file.")
    ap.add_argument("--districts", default=None, help="Override data.districts_path")
    ap.add_argument("--outline", default=None, help="Override data.outline_path (defaults to the union of districts)")
    ap.add_argument("--out", default=None, help="Override paths.out_dir")
    ap.add_argument("--runs", type=int, default=None, help="Override placement.n_runs")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--grid-only", action="store_true", help="Build the hex grid without placing districts.")
    ap.add_argument("--record", action="store_true", help="Write flipbook frames at each checkpoint.")
    args = ap.parse_args()

    cfg = yaml.safe_load(open(args.config, "r")) if Path(args.config).exists() else {}
    data = cfg.get("data", {}) or {}

    districts_path = _resolve_path(cfg, args.districts, "districts_path")
    outline_path = _resolve_path(cfg, args.outline, "outline_path", required=False)

    layer = data.get("districts_layer")
    gdf = gpd.read_file(districts_path, layer=layer) if layer else gpd.read_file(districts_path)
    outlines = gpd.read_file(outline_path) if outline_path else None

    state_col = data.get("state_col", "state")
    district_col = data.get("district_col", "district")
    shp, outline, labels = select_state(
        gdf, args.state, state_col=state_col, district_col=district_col, outlines=outlines
    )
    print(f"[1] {len(shp)} districts loaded for state={args.state or 'ALL'}", flush=True)

    grid_cfg = _grid_config(cfg, args.state)
    place_cfg = _placement_config(cfg, args.state, args)

    state_key = args.state or "all"
    out_root = Path(args.out or (cfg.get("paths", {}) or {}).get("out_dir", "outputs")).expanduser()
    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = out_root / state_key / f"hexmap_{run_id}"
    run_dir.mkdir(parents=True, exist_ok=True)

    rec = FrameRecorder(run_dir=run_dir, title=f"Hex map [{state_key}]") if args.record else None

    print("[2] building hex grid + placing districts...", flush=True)
    result = make_hex_map(
        shp,
        outline,
        labels=labels,
        grid_cfg=grid_cfg,
        place_cfg=place_cfg,
        assign=not args.grid_only,
        observer=rec,
    )
    print("[3] done", flush=True)

    if rec is not None:
        print("Flipbook manifest:", rec.write_manifest(), flush=True)

    export_run(
        result=result,
        run_dir=run_dir,
        title=f"Hex map [{state_key}]",
        meta={"state": state_key, "source": str(districts_path)},
    )
    print("Saved:", run_dir)


if __name__ == "__main__":
    main()
