"""
Export of analysis results.

Writes the significant gene table as CSV, each figure as standalone HTML and
the settings used for the run as YAML, all into one output directory.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import re
import pandas as pd
import plotly.graph_objects as go
import yaml

logger = logging.getLogger(__name__)


@dataclass
class ExportData:
    """Export bundle assembled by the pipeline."""

    significant_df: Optional[pd.DataFrame]  # final significant gene table
    comparison: tuple  # (test_condition, reference_condition)
    figures: Dict[str, go.Figure] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)


class ExportEngine:
    """File export for pipeline results."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    @staticmethod
    def sanitize_name(name: str, max_length: int = 80) -> str:
        """File-system safe name: letters, digits, dot, dash and underscore."""
        name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
        return name[:max_length] or "figure"

    def export_significant_csv(self, significant_df: pd.DataFrame, comparison: tuple) -> Path:
        test, ref = comparison
        path = self.output_dir / f"significant_{self.sanitize_name(test)}_vs_{self.sanitize_name(ref)}.csv"
        path.parent.mkdir(parents=True, exist_ok=True)
        significant_df.to_csv(path, index=False)
        logger.info(f"Wrote {len(significant_df)} significant genes to {path}")
        return path

    def export_figures(self, figures: Dict[str, go.Figure]) -> List[Path]:
        figure_dir = self.output_dir / "figures"
        figure_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for name, fig in figures.items():
            path = figure_dir / f"{self.sanitize_name(name)}.html"
            fig.write_html(str(path), include_plotlyjs="cdn")
            paths.append(path)
        logger.info(f"Wrote {len(paths)} figures to {figure_dir}")
        return paths

    def export_settings(self, settings: Dict[str, Any]) -> Path:
        path = self.output_dir / "run_settings.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"exported_at": datetime.now().isoformat(timespec="seconds"), **settings}
        with open(path, "w") as f:
            yaml.safe_dump(payload, f, sort_keys=False)
        return path

    def export(self, export_data: ExportData, export_csv: bool = True) -> List[Path]:
        """Write everything in `export_data`; returns the written paths."""
        written = [self.export_settings(export_data.settings)]
        if export_csv and export_data.significant_df is not None:
            written.append(
                self.export_significant_csv(export_data.significant_df, export_data.comparison)
            )
        written.extend(self.export_figures(export_data.figures))
        return written
