"""
Configuration file support for the commstats CLI.

Supports YAML and JSON config files with CLI argument override.

Example config (YAML):

    input:
      abundance: data/feature-table.tsv
      taxonomy: data/taxonomy.tsv
      metadata: data/metadata.tsv
      orientation: taxa
    group_column: diet
    output: results/
    n_jobs: 4
    rarefaction:
      depth: 5000
      seed: 42
    beta:
      metric: bray-curtis
      ordination: NMDS
      permutations: 999
    differential:
      rank: Genus
      dispersion: shrunk
"""

from __future__ import annotations

import json
from argparse import Namespace
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class InputConfig:
    """Input table locations."""
    abundance: Optional[Path] = None
    taxonomy: Optional[Path] = None
    metadata: Optional[Path] = None
    sample_id_column: Optional[str] = None
    orientation: str = "samples"


@dataclass
class RarefactionConfig:
    """Rarefaction before alpha/beta diversity."""
    enabled: bool = True
    depth: Optional[int] = None
    seed: Optional[int] = 42


@dataclass
class AlphaConfig:
    """Alpha diversity measures."""
    enabled: bool = True
    measures: List[str] = field(default_factory=lambda: ["Observed", "Chao1", "ACE", "Shannon", "Simpson"])


@dataclass
class BetaConfig:
    """Beta diversity, ordination and PERMANOVA."""
    enabled: bool = True
    metric: str = "bray-curtis"
    ordination: str = "NMDS"
    dims: int = 2
    max_iter: int = 300
    n_init: int = 10
    seed: Optional[int] = 42
    permutations: int = 999


@dataclass
class DifferentialConfig:
    """Negative-binomial differential abundance."""
    enabled: bool = True
    rank: Optional[str] = "Genus"
    top_n: Optional[int] = None
    contrast: Optional[List[str]] = None
    dispersion: str = "gene"
    alpha: float = 0.05


@dataclass
class AnalysisConfig:
    """
    Complete configuration for ``commstats run``.

    Mirrors the CLI argument structure for consistency.
    """
    input: InputConfig = field(default_factory=InputConfig)
    group_column: Optional[str] = None
    output: Path = Path("commstats_results")
    n_jobs: int = 1
    rarefaction: RarefactionConfig = field(default_factory=RarefactionConfig)
    alpha: AlphaConfig = field(default_factory=AlphaConfig)
    beta: BetaConfig = field(default_factory=BetaConfig)
    differential: DifferentialConfig = field(default_factory=DifferentialConfig)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> AnalysisConfig:
        """
        Build from a nested mapping (as returned by ``load_config``).

        Raises:
            ValueError: On unknown keys or sections that are not mappings
        """
        sections = {
            "input": InputConfig,
            "rarefaction": RarefactionConfig,
            "alpha": AlphaConfig,
            "beta": BetaConfig,
            "differential": DifferentialConfig,
        }
        _check_keys(config, {f.name for f in fields(cls)}, "top level")

        kwargs: Dict[str, Any] = {}
        for key, value in config.items():
            if key in sections:
                if value is None:
                    continue
                if not isinstance(value, dict):
                    raise ValueError(f"Config section {key!r} must be a mapping, got {type(value).__name__}")
                section_cls = sections[key]
                _check_keys(value, {f.name for f in fields(section_cls)}, key)
                kwargs[key] = section_cls(**value)
            else:
                kwargs[key] = value

        result = cls(**kwargs)
        for name in ("abundance", "taxonomy", "metadata"):
            value = getattr(result.input, name)
            if value is not None:
                setattr(result.input, name, Path(value))
        result.output = Path(result.output)
        return result

    def to_dict(self) -> Dict[str, Any]:
        def convert(obj):
            if isinstance(obj, Path):
                return str(obj)
            if isinstance(obj, dict):
                return {k: convert(v) for k, v in obj.items()}
            if isinstance(obj, list):
                return [convert(v) for v in obj]
            return obj
        return convert(asdict(self))


def _check_keys(mapping: Dict[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(mapping) - allowed)
    if unknown:
        raise ValueError(f"Unknown config keys in {where}: {unknown}. Allowed: {sorted(allowed)}")


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("analysis.yaml"))
        >>> print(config['beta']['metric'])
        bray-curtis
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in ('.yaml', '.yml', '.json'):
        raise ValueError(
            f"Unsupported config format: {suffix}. "
            f"Use .yaml, .yml, or .json"
        )

    try:
        with open(config_path, 'r') as f:
            if suffix == '.json':
                config = json.load(f)
            else:
                config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def validate_config(config: AnalysisConfig) -> List[str]:
    """
    Check value ranges and choices.

    Returns:
        List of error messages (empty list = valid)
    """
    from commstats.diversity.alpha import MEASURES
    from commstats.diversity.beta import METRICS

    errors: List[str] = []
    if config.input.orientation not in ("samples", "taxa"):
        errors.append(f"input.orientation must be 'samples' or 'taxa', got {config.input.orientation!r}")
    if config.n_jobs == 0 or config.n_jobs < -1:
        errors.append(f"n_jobs must be positive or -1, got {config.n_jobs}")

    r = config.rarefaction
    if r.depth is not None and r.depth <= 0:
        errors.append(f"rarefaction.depth must be positive, got {r.depth}")

    known = {m.lower() for m in MEASURES}
    bad = [m for m in config.alpha.measures if str(m).lower() not in known]
    if bad:
        errors.append(f"alpha.measures has unknown entries {bad}; available {list(MEASURES)}")

    b = config.beta
    if b.metric.lower().replace("_", "-") not in METRICS + ("braycurtis", "bray"):
        errors.append(f"beta.metric must be one of {list(METRICS)}, got {b.metric!r}")
    if b.ordination.upper() not in ("NMDS", "PCOA"):
        errors.append(f"beta.ordination must be 'NMDS' or 'PCoA', got {b.ordination!r}")
    if b.dims < 1:
        errors.append(f"beta.dims must be at least 1, got {b.dims}")
    if b.max_iter < 1:
        errors.append(f"beta.max_iter must be at least 1, got {b.max_iter}")
    if b.n_init < 1:
        errors.append(f"beta.n_init must be at least 1, got {b.n_init}")
    if b.permutations < 0:
        errors.append(f"beta.permutations must be non-negative, got {b.permutations}")

    d = config.differential
    if d.dispersion not in ("gene", "shrunk"):
        errors.append(f"differential.dispersion must be 'gene' or 'shrunk', got {d.dispersion!r}")
    if d.top_n is not None and d.top_n < 1:
        errors.append(f"differential.top_n must be at least 1, got {d.top_n}")
    if d.top_n is not None and d.rank is None:
        errors.append("differential.top_n requires differential.rank")
    if d.contrast is not None and len(d.contrast) != 2:
        errors.append(f"differential.contrast must be [test, reference], got {d.contrast}")
    if not (0 < d.alpha < 1):
        errors.append(f"differential.alpha must be in (0, 1), got {d.alpha}")

    return errors


def _merge_value(cli_value: Any, config_value: Any) -> Any:
    """
    Merge a single config value with a CLI argument.

    CLI arguments default to None; a non-None value was given explicitly
    and always wins over the config file.
    """
    if cli_value is not None:
        return cli_value
    return config_value


# CLI argument name -> (config section or None for top level, field name)
_ARG_MAP = {
    "abundance": ("input", "abundance"),
    "taxonomy": ("input", "taxonomy"),
    "metadata": ("input", "metadata"),
    "orientation": ("input", "orientation"),
    "sample_id_column": ("input", "sample_id_column"),
    "group_column": (None, "group_column"),
    "output": (None, "output"),
    "n_jobs": (None, "n_jobs"),
    "depth": ("rarefaction", "depth"),
    "seed": ("rarefaction", "seed"),
    "metric": ("beta", "metric"),
    "ordination": ("beta", "ordination"),
    "permutations": ("beta", "permutations"),
    "rank": ("differential", "rank"),
    "top_n": ("differential", "top_n"),
    "dispersion": ("differential", "dispersion"),
    "fdr": ("differential", "alpha"),
}


def merge_config_with_args(config: AnalysisConfig, args: Namespace) -> AnalysisConfig:
    """
    Apply explicitly given CLI arguments on top of a config.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. Dataclass defaults

    ``--seed`` seeds both rarefaction and ordination/PERMANOVA.

    Returns:
        The updated config (modified in place and returned)
    """
    for arg_name, (section, field_name) in _ARG_MAP.items():
        if not hasattr(args, arg_name):
            continue
        target = config if section is None else getattr(config, section)
        merged = _merge_value(getattr(args, arg_name), getattr(target, field_name))
        if field_name in ("abundance", "taxonomy", "metadata", "output") and merged is not None:
            merged = Path(merged)
        setattr(target, field_name, merged)

    if getattr(args, "seed", None) is not None:
        config.beta.seed = args.seed
    if getattr(args, "contrast", None) is not None:
        config.differential.contrast = list(args.contrast)
    if getattr(args, "no_rarefy", False):
        config.rarefaction.enabled = False
    return config
