"""
Configuration system for auto-reorientation.

YAML-loadable dataclasses for smoothing, estimation and decomposition.
"""

from dataclasses import dataclass, field, asdict
from typing import Tuple, Optional, Dict, Any
import os
import yaml
from pathlib import Path


TEMPLATE_ENV_VAR = 'AUTOREORIENT_TEMPLATE'
TEMPLATE_NAME = 'avg152T1.nii'

_SECTIONS = ('smoothing', 'estimation', 'decomposition')


@dataclass
class SmoothingConfig:
    """Configuration for the smoothing applied before registration."""
    reference_fwhm: float = 8.0  # mm, applied to the reference image
    template_fwhm: float = 0.0  # mm, 0 = no smoothing
    to_uint8: bool = True  # Rescale smoothed volumes to 0..255


@dataclass
class EstimationConfig:
    """Configuration for the registration estimator."""
    mode: str = 'mni'  # 'mni', 'affine' or 'rigid'
    metric: str = 'MI'  # 'MI' (Mattes mutual information) or 'MSE'
    histogram_bins: int = 50
    sampling_percentage: float = 0.1
    learning_rate: float = 1.0
    num_iterations: int = 200
    shrink_factors: Tuple[int, ...] = (4, 2, 1)
    smoothing_sigmas: Tuple[float, ...] = (2.0, 1.0, 0.0)  # mm
    initializer: str = 'moments'  # 'moments' or 'geometry'
    seed: int = 42


@dataclass
class DecompositionConfig:
    """Configuration for rigid-body extraction."""
    max_condition_number: float = 1e6


@dataclass
class ReorientConfig:
    """Main reorientation configuration."""
    # Sub-configs
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
    estimation: EstimationConfig = field(default_factory=EstimationConfig)
    decomposition: DecompositionConfig = field(default_factory=DecompositionConfig)

    # Global settings
    template: Optional[str] = None  # None = default_template_path()
    rollback_on_error: bool = False
    verbose: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReorientConfig':
        """
        Build a configuration from a nested dictionary.

        Args:
            data: Dictionary with optional 'smoothing', 'estimation' and
                'decomposition' sections plus global settings

        Returns:
            ReorientConfig instance

        Raises:
            ValueError: On unknown keys
        """
        data = dict(data or {})
        try:
            smoothing = SmoothingConfig(**(data.get('smoothing') or {}))
            estimation = EstimationConfig(**(data.get('estimation') or {}))
            decomposition = DecompositionConfig(**(data.get('decomposition') or {}))
            estimation.shrink_factors = tuple(estimation.shrink_factors)
            estimation.smoothing_sigmas = tuple(estimation.smoothing_sigmas)

            global_settings = {k: v for k, v in data.items() if k not in _SECTIONS}
            return cls(
                smoothing=smoothing,
                estimation=estimation,
                decomposition=decomposition,
                **global_settings
            )
        except TypeError as e:
            raise ValueError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_yaml(cls, path: str) -> 'ReorientConfig':
        """
        Load configuration from YAML file.

        Args:
            path: Path to YAML config file

        Returns:
            ReorientConfig instance
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)

    def to_yaml(self, path: str) -> None:
        """
        Save configuration to YAML file.

        Args:
            path: Output path
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        estimation = asdict(self.estimation)
        estimation['shrink_factors'] = list(self.estimation.shrink_factors)
        estimation['smoothing_sigmas'] = list(self.estimation.smoothing_sigmas)
        return {
            'smoothing': asdict(self.smoothing),
            'estimation': estimation,
            'decomposition': asdict(self.decomposition),
            'template': self.template,
            'rollback_on_error': self.rollback_on_error,
            'verbose': self.verbose,
        }


def create_default_config() -> ReorientConfig:
    """Create default configuration."""
    return ReorientConfig()


def default_template_path() -> Optional[str]:
    """
    Locate the MNI-space template used when none is given.

    Looked up in order: the AUTOREORIENT_TEMPLATE environment variable, the
    package data directory, then SPM's canonical directory under $SPM_DIR.

    Returns:
        Path to the template, or None if no candidate exists
    """
    candidates = []
    if os.environ.get(TEMPLATE_ENV_VAR):
        candidates.append(Path(os.environ[TEMPLATE_ENV_VAR]).expanduser())
    candidates.append(Path(__file__).resolve().parent.parent / 'data' / TEMPLATE_NAME)
    if os.environ.get('SPM_DIR'):
        candidates.append(Path(os.environ['SPM_DIR']).expanduser() / 'canonical' / TEMPLATE_NAME)

    for candidate in candidates:
        if candidate.is_file():
            return str(candidate)
    return None
