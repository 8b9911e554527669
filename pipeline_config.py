"""
Pipeline configuration loaded from YAML.

Every threshold of the analysis lives here with the defaults of the published
remyelination analysis, so a run is fully described by its config file.
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
import yaml

PathType = Union[str, Path]


@dataclass
class InputSettings:
    bundle: Optional[str] = "cache/abundance_bundle.pkl"
    quant_dir: Optional[str] = None
    quant_type: str = "salmon"
    quant_pattern: Optional[str] = None
    tx2gene: Optional[str] = None
    samples: str = "samples.csv"
    sample_column: str = "sample"
    markers: Optional[str] = None
    pathways: Optional[str] = None
    go_terms: Optional[str] = None


@dataclass
class AnnotationSettings:
    release: str = "jan2020"
    dataset: str = "mmusculus_gene_ensembl"
    cache_dir: str = "cache"
    batch_size: int = 500
    timeout: Optional[float] = None


@dataclass
class FilterSettings:
    min_group_median: float = 3


@dataclass
class GCSettings:
    num_bins: int = 10


@dataclass
class UnwantedVariationSettings:
    k: int = 1
    controls: str = "empirical"  # "empirical" (not DE in a first-pass fit) or "all"


@dataclass
class DESettings:
    design_factor: str = "condition"
    test_level: str = "remyelination"
    reference_level: str = "control"
    padj_threshold: float = 0.05
    min_log2_abundance: float = 6.5
    pseudocount: float = 0.5
    shrink_lfc: bool = True


@dataclass
class OutputSettings:
    directory: str = "results"
    export_csv: bool = True
    render_figures: bool = True


@dataclass
class PipelineConfig:
    """Full run configuration; relative paths resolve against `base_dir`."""

    inputs: InputSettings = field(default_factory=InputSettings)
    annotation: AnnotationSettings = field(default_factory=AnnotationSettings)
    filtering: FilterSettings = field(default_factory=FilterSettings)
    gc: GCSettings = field(default_factory=GCSettings)
    unwanted_variation: UnwantedVariationSettings = field(
        default_factory=UnwantedVariationSettings
    )
    de: DESettings = field(default_factory=DESettings)
    outputs: OutputSettings = field(default_factory=OutputSettings)
    base_dir: Path = field(default_factory=Path.cwd)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.unwanted_variation.k < 1:
            raise ValueError(f"unwanted_variation.k must be >= 1, got {self.unwanted_variation.k}")
        if self.unwanted_variation.controls not in ("empirical", "all"):
            raise ValueError(
                f"unwanted_variation.controls must be empirical or all, "
                f"got {self.unwanted_variation.controls}"
            )
        if not 0 < self.de.padj_threshold < 1:
            raise ValueError(f"de.padj_threshold must be in (0, 1), got {self.de.padj_threshold}")
        if self.de.pseudocount <= 0:
            raise ValueError(f"de.pseudocount must be > 0, got {self.de.pseudocount}")
        if self.gc.num_bins < 1:
            raise ValueError(f"gc.num_bins must be >= 1, got {self.gc.num_bins}")
        if self.inputs.quant_type not in ("salmon", "kallisto"):
            raise ValueError(f"inputs.quant_type must be salmon or kallisto, got {self.inputs.quant_type}")
        if self.de.test_level == self.de.reference_level:
            raise ValueError("de.test_level and de.reference_level must differ")

    def resolve(self, path: Optional[PathType]) -> Optional[Path]:
        """Absolute path for a configured (possibly relative) path."""
        if path is None:
            return None
        path = Path(path)
        return path if path.is_absolute() else self.base_dir / path

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[PathType] = None) -> "PipelineConfig":
        sections = {
            "inputs": InputSettings,
            "annotation": AnnotationSettings,
            "filtering": FilterSettings,
            "gc": GCSettings,
            "unwanted_variation": UnwantedVariationSettings,
            "de": DESettings,
            "outputs": OutputSettings,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown config sections: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for name, section_cls in sections.items():
            values = data.get(name) or {}
            allowed = {f.name for f in fields(section_cls)}
            bad = set(values) - allowed
            if bad:
                raise ValueError(f"Unknown keys in '{name}': {sorted(bad)}")
            kwargs[name] = section_cls(**values)
        kwargs["base_dir"] = Path(base_dir) if base_dir is not None else Path.cwd()
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, config_path: PathType) -> "PipelineConfig":
        """
        Load a pipeline configuration file.

        Args:
            config_path: Path to YAML config; relative paths inside it are
                resolved against the file's directory
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Pipeline config not found: {config_path}")

        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data, base_dir=config_file.resolve().parent)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("base_dir")
        return data
