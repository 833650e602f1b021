"""Core reorientation components."""

from autoreorient.core.errors import (
    ReorientError,
    InputError,
    EstimationError,
    DecompositionError,
    InversionError,
    MetadataError,
    MetadataReadError,
    MetadataWriteError,
)
from autoreorient.core.config import ReorientConfig, create_default_config, default_template_path
from autoreorient.core.progress import ProgressSink, NullProgress, TqdmProgress, RecordingProgress
from autoreorient.core.reorient import AutoReorient, ReorientationResult, auto_reorient

__all__ = [
    'ReorientError',
    'InputError',
    'EstimationError',
    'DecompositionError',
    'InversionError',
    'MetadataError',
    'MetadataReadError',
    'MetadataWriteError',
    'ReorientConfig',
    'create_default_config',
    'default_template_path',
    'ProgressSink',
    'NullProgress',
    'TqdmProgress',
    'RecordingProgress',
    'AutoReorient',
    'ReorientationResult',
    'auto_reorient',
]
