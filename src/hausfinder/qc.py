"""QC figures of a needle placed in the haystack."""

import functools
import logging
import pathlib
from typing import List, Optional

import numpy as np
import skimage.exposure

from . import config, imaging
from .models import SearchResult
from .session import MatchSession

log = logging.getLogger(__name__)


class MatchPlotter:
    def __init__(self, out_dir: Optional[str] = config.QC_OUT_DIR):
        self.out_dir = out_dir
        self.figures: list = []

    def plot_match(self, session: MatchSession, result: SearchResult, label: str):
        import matplotlib.patches as mpatches
        import matplotlib.pyplot as plt

        viz = self._get_viz_img(session)
        height, width = viz.shape[:2]
        rgb = np.dstack([viz, viz, viz])

        # haystack edges in lime
        rgb[session.haystack_edges.cells] = (0, 255, 0)

        title = "no match"
        if result.found:
            pose = result.pose
            needle = session.needle_edges_for(pose)
            xs, ys = needle.edge_coords
            xs = xs + pose.offset.dx
            ys = ys + pose.offset.dy
            inside = (xs >= 0) & (xs < width) & (ys >= 0) & (ys < height)
            rgb[ys[inside], xs[inside]] = (255, 0, 255)
            title = (
                f"dist = {result.score:.2f} at ({pose.offset.dx}, {pose.offset.dy}), "
                f"rotation {pose.rotation:g}, scale {pose.scale:g}"
            )

        fig, ax = plt.subplots()
        ax.imshow(rgb)
        if result.found:
            center = (
                result.pose.offset.dx + session.needle_edges.width / 2,
                result.pose.offset.dy + session.needle_edges.height / 2,
            )
            ax.add_patch(
                mpatches.Circle(center, radius=20, fill=False, color="red", linewidth=2)
            )
        Square = functools.partial(mpatches.Rectangle, xy=(0, 0), width=1, height=1)
        handles = [
            Square(color="magenta", label="Needle"),
            Square(color="lime", label="Haystack"),
        ]
        ax.legend(handles=handles, fontsize=8)
        ax.set_title(title, fontsize=8)
        if result.cancelled:
            fig.suptitle("Search stopped early", fontsize=10)
        self._set_figure_size(fig, (height, width))
        self._add_figure(fig, label)
        return fig

    def save_figures(self) -> List[pathlib.Path]:
        paths = []
        if len(self.figures):
            import matplotlib.pyplot as plt

            qc_dir = None
            if self.out_dir is not None:
                qc_dir = pathlib.Path(self.out_dir)
                qc_dir.mkdir(parents=True, exist_ok=True)
            for fig in self.figures:
                if qc_dir is not None:
                    path = qc_dir / f"{fig.name}.jpg"
                    fig.savefig(path, dpi=config.QC_DPI, bbox_inches="tight")
                    log.info(f"QC figure saved to {path}")
                    paths.append(path)
                plt.close(fig)
        self.figures = []
        return paths

    def _add_figure(self, fig, label):
        fig.name = f"qc_match-{label}"
        self.figures.append(fig)

    @staticmethod
    def _get_viz_img(session: MatchSession) -> np.ndarray:
        if session.haystack_image is None:
            return np.full(session.haystack_edges.shape, 255, dtype="uint8")
        img = imaging.to_gray(session.haystack_image)
        in_range = np.percentile(img, [0.1, 99.9])
        if in_range[0] == in_range[1]:
            return img.astype("uint8")
        # dim the background so the overlays stand out
        return (
            skimage.exposure.rescale_intensity(
                img, in_range=tuple(in_range), out_range=(64, 192)
            )
            .round()
            .astype("uint8")
        )

    @staticmethod
    def _set_figure_size(fig, shape):
        im_h, im_w = shape
        if im_w < 500:
            im_h *= 500 / im_w
            im_w = 500
        _size_factor = np.divide([im_h, im_w], 2500).max()
        if _size_factor > 1:
            im_h, im_w = np.divide([im_h, im_w], _size_factor)
        fig.set_size_inches(im_w / 144, (im_h + 50) / 144)
        fig.tight_layout(pad=1.5)
