"""
autoreorient: rigid reorientation of MRI sessions towards MNI space

Registers a reference image to a template, keeps the rigid-body part of the
estimate and writes it into the headers of every image of the session.
"""

__version__ = "0.1.0"

from autoreorient.core.reorient import AutoReorient, ReorientationResult, auto_reorient
from autoreorient.core.config import ReorientConfig
from autoreorient.transforms.rigid import RigidTransform, decompose_rigid

__all__ = [
    "AutoReorient",
    "ReorientationResult",
    "auto_reorient",
    "ReorientConfig",
    "RigidTransform",
    "decompose_rigid",
    "__version__",
]
