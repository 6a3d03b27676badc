from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import geopandas as gpd
import matplotlib.pyplot as plt


@dataclass
class FrameMeta:
    event: str
    run: int = -1
    score: float = float("nan")
    note: str = ""


class FrameRecorder:
    """
    Progress observer for make_hex_map() that writes a "flipbook" folder:
      <run_dir>/flipbook/
        frames/
          frame_000000.png   grid + target centroids
          frame_000001.png   best plan of run 1
          ...
        manifest.json

    Pass an instance as `observer=`; it only reads what it is given.
    The camera is fixed on the grid's bounds so frames line up.
    """

    def __init__(
        self,
        *,
        run_dir: Path,
        title: str = "",
        dpi: int = 140,
        figsize: tuple[float, float] = (8.0, 8.0),
        facecolor: str = "white",
        bounds_pad_frac: float = 0.02,
    ):
        self.run_dir = Path(run_dir)
        self.title = title or "Hex map"
        self.dpi = dpi
        self.figsize = figsize
        self.facecolor = facecolor
        self.bounds_pad_frac = float(bounds_pad_frac)

        self.flipbook_dir = self.run_dir / "flipbook"
        self.frames_dir = self.flipbook_dir / "frames"
        self.frames_dir.mkdir(parents=True, exist_ok=True)

        self.gdf: Optional[gpd.GeoDataFrame] = None
        self.targets = None
        self._bounds: Optional[tuple[float, float, float, float]] = None
        self.frames: list[Dict[str, Any]] = []

    def __call__(self, event: str, payload: dict) -> None:
        if event == "grid_built":
            grid = payload["grid"]
            self.targets = payload["targets"]
            self.gdf = gpd.GeoDataFrame({"cell_id": np.arange(grid.n_cells)}, geometry=grid.cells.values, crs=grid.cells.crs)

            minx, miny, maxx, maxy = self.gdf.total_bounds
            dx = (maxx - minx) * self.bounds_pad_frac
            dy = (maxy - miny) * self.bounds_pad_frac
            self._bounds = (minx - dx, miny - dy, maxx + dx, maxy + dy)

            self.record(labels=None, meta=FrameMeta(event=event, note=f"{grid.n_cells} cells"))
        elif event == "run_done":
            self.record(
                labels=np.asarray(payload["labels"]),
                meta=FrameMeta(event=event, run=int(payload["run"]), score=float(payload["score"])),
            )
        elif event == "assembled" and payload.get("cell_district") is not None:
            self.record(labels=np.asarray(payload["cell_district"]), meta=FrameMeta(event=event, note="final"))

    def _frame_path(self, frame_no: int) -> Path:
        return self.frames_dir / f"frame_{frame_no:06d}.png"

    def record(self, *, labels: Optional[np.ndarray], meta: FrameMeta) -> Path:
        if self.gdf is None:
            raise RuntimeError("FrameRecorder.record() called before the grid was built.")

        fig, ax = plt.subplots(figsize=self.figsize)
        fig.patch.set_facecolor(self.facecolor)

        if labels is None:
            self.gdf.plot(ax=ax, facecolor="none", edgecolor="black", linewidth=0.4)
            if self.targets is not None:
                xy = self.targets.coords
                ax.scatter(xy[:, 0], xy[:, 1], s=18, color="tab:red", zorder=3)
        else:
            gdf = self.gdf.assign(district=labels.astype(int))
            gdf.plot(ax=ax, column="district", categorical=True, cmap="tab20", legend=False,
                     edgecolor="white", linewidth=0.3)
            gdf.dissolve(by="district").boundary.plot(ax=ax, color="black", linewidth=1.2)

        minx, miny, maxx, maxy = self._bounds
        ax.set_xlim(minx, maxx)
        ax.set_ylim(miny, maxy)
        ax.set_aspect("equal", adjustable="box")
        ax.set_axis_off()

        overlay = f"{self.title}\n{meta.event}"
        if meta.run >= 0:
            overlay += f" | run={meta.run + 1} | score={meta.score:.4f}"
        if meta.note:
            overlay += f"\n{meta.note}"
        ax.text(
            0.01,
            0.01,
            overlay,
            transform=ax.transAxes,
            fontsize=9,
            va="bottom",
            ha="left",
            bbox=dict(boxstyle="round,pad=0.3", facecolor="white", alpha=0.80),
        )

        frame_no = len(self.frames)
        out_path = self._frame_path(frame_no)
        fig.savefig(out_path, dpi=self.dpi)
        plt.close(fig)

        self.frames.append(
            {
                "frame": out_path.name,
                "event": meta.event,
                "run": int(meta.run),
                "score": None if np.isnan(meta.score) else float(meta.score),
                "note": meta.note,
            }
        )
        return out_path

    def write_manifest(self, *, fps: int = 2) -> Path:
        manifest = {
            "title": self.title,
            "fps": int(fps),
            "frames_dir": "frames",
            "frames": self.frames,
        }
        out_path = self.flipbook_dir / "manifest.json"
        out_path.write_text(json.dumps(manifest, indent=2))
        return out_path
