"""
Demo dataset generator for the remyelination analysis.

Generates a small synthetic control vs remyelination experiment with known
differential genes, and can write it out as a complete pipeline project
(cached bundle, sample sheet, annotation cache, curated lists and config).
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union
import pandas as pd
import numpy as np
import yaml

from abundance_loader import AbundanceBundle
from gene_annotation import AnnotationSource, GeneAnnotator
from sample_design import SampleDesign

DEMO_SYMBOLS = [
    "Mbp", "Lpl",  # differential
    "Actb", "Gapdh", "Olig2", "Pdgfra", "Aif1", "Gfap", "Hmgcr", "Col1a1",
]


@dataclass(frozen=True)
class DemoDataset:
    bundle: AbundanceBundle
    design: SampleDesign
    annotation: pd.DataFrame
    differential_genes: List[str]
    flat_genes: List[str]


def load_demo_dataset(
    n_differential: int = 2,
    n_flat: int = 8,
    n_per_group: int = 6,
    fold_change: float = 8.0,
    seed: int = 42,
) -> DemoDataset:
    """
    Generate a synthetic 2-group RNA-seq experiment.

    Dataset characteristics:
    - `n_per_group` control and remyelination samples (ctrl_1.., remy_1..)
    - differential genes alternate up / down by `fold_change` in remyelination
    - flat genes share the replicate noise of the matching replicate in the
      other group, so their group means are identical
    - per-replicate sequencing depth varies, differential genes have the
      highest base means
    - Reproducible with `seed`
    """
    rng = np.random.default_rng(seed)
    n_genes = n_differential + n_flat

    control = [f"ctrl_{i + 1}" for i in range(n_per_group)]
    treated = [f"remy_{i + 1}" for i in range(n_per_group)]
    samples = control + treated
    genes = [f"ENSMUSG{i + 1:011d}" for i in range(n_genes)]
    differential, flat = genes[:n_differential], genes[n_differential:]

    base = np.concatenate([
        np.full(n_differential, 20000.0),
        rng.uniform(200, 2000, n_flat),
    ])
    replicate_noise = np.exp(rng.normal(0, 0.1, size=(n_genes, n_per_group)))
    depth = rng.uniform(0.8, 1.2, n_per_group)

    effect = np.ones(n_genes)
    for i in range(n_differential):
        effect[i] = fold_change if i % 2 == 0 else 1.0 / fold_change

    ctrl_counts = base[:, None] * replicate_noise * depth[None, :]
    remy_counts = ctrl_counts * effect[:, None]
    counts = pd.DataFrame(
        np.round(np.hstack([ctrl_counts, remy_counts])).astype(int),
        index=genes, columns=samples,
    )
    counts.index.name = "gene_id"

    gene_length = rng.uniform(800, 4000, n_genes)
    lengths = pd.DataFrame(
        np.repeat(gene_length[:, None], len(samples), axis=1),
        index=counts.index, columns=samples,
    )
    rate = counts / lengths
    abundance = rate / rate.sum(axis=0) * 1e6

    design = SampleDesign(
        pd.DataFrame(
            {"condition": ["control"] * n_per_group + ["remyelination"] * n_per_group},
            index=pd.Index(samples, name="sample"),
        )
    )

    symbols = DEMO_SYMBOLS[:n_genes] + [
        f"Gene{i}" for i in range(len(DEMO_SYMBOLS), n_genes)
    ]
    annotation = pd.DataFrame(
        {
            "symbol": symbols,
            "biotype": "protein_coding",
            "description": [f"{s} demo gene" for s in symbols],
            "gc_content": np.round(rng.uniform(35, 60, n_genes), 2),
        },
        index=counts.index,
    )

    return DemoDataset(
        bundle=AbundanceBundle(counts=counts, lengths=lengths, abundance=abundance),
        design=design,
        annotation=annotation,
        differential_genes=differential,
        flat_genes=flat,
    )


def demo_curated_lists() -> dict:
    """Small marker, pathway and GO tables matching DEMO_SYMBOLS."""
    markers = pd.DataFrame(
        {
            "symbol": ["Pdgfra", "Olig2", "Mbp", "Gfap", "Aif1"],
            "lineage": ["OPC", "Oligodendrocyte", "Oligodendrocyte", "Astrocyte", "Microglia"],
        }
    )
    pathways = pd.DataFrame(
        {
            "symbol": ["Hmgcr", "Lpl", "Mbp", "Olig2", "Aif1", "Col1a1", "Gfap"],
            "category": [
                "Cholesterol synthesis", "Lipid metabolism", "Myelin structure",
                "Oligodendrocyte differentiation", "Inflammation",
                "Extracellular matrix", "Phagocytosis",
            ],
            "module": [
                "Mevalonate", "Lipid uptake", "Compact myelin",
                "Transcription factors", "Microglia activation",
                "Collagens", "Debris clearance",
            ],
        }
    )
    go_terms = pd.DataFrame(
        {
            "term": [
                "myelination", "cholesterol biosynthetic process",
                "inflammatory response", "lipid transport", "ribosome biogenesis",
            ],
            "score": [8.2, 6.1, 4.4, 3.9, 1.2],
            "module": ["Myelin", "Lipids", "Immune", "Lipids", "Other"],
            "include": [True, True, True, True, False],
        }
    )
    return {"markers": markers, "pathways": pathways, "go_terms": go_terms}


def write_demo_project(
    directory: Union[str, Path],
    dataset: Optional[DemoDataset] = None,
    gc_bins: int = 1,
    render_figures: bool = True,
) -> Path:
    """
    Write the demo dataset as a runnable pipeline project.

    Ten genes cannot populate ten GC strata, so the demo config uses
    `gc_bins` strata (default 1, i.e. GC normalization is the identity).

    Returns:
        Path of the written pipeline.yaml
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    dataset = dataset or load_demo_dataset()

    dataset.bundle.save(directory / "cache" / "abundance_bundle.pkl")
    dataset.design.table.reset_index().to_csv(directory / "samples.csv", index=False)

    source = AnnotationSource()
    GeneAnnotator(directory / "cache", source).write_cache(dataset.annotation)

    reference = directory / "reference"
    reference.mkdir(exist_ok=True)
    for name, table in demo_curated_lists().items():
        table.to_csv(reference / f"{name}.csv", index=False)

    config = {
        "inputs": {
            "bundle": "cache/abundance_bundle.pkl",
            "samples": "samples.csv",
            "markers": "reference/markers.csv",
            "pathways": "reference/pathways.csv",
            "go_terms": "reference/go_terms.csv",
        },
        "annotation": {"release": source.release, "dataset": source.dataset, "cache_dir": "cache"},
        "gc": {"num_bins": gc_bins},
        "outputs": {"directory": "results", "render_figures": render_figures},
    }
    config_path = directory / "pipeline.yaml"
    with open(config_path, "w") as f:
        yaml.safe_dump(config, f, sort_keys=False)
    return config_path
