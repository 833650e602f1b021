"""Rigid-body transform extraction."""

from autoreorient.transforms.rigid import (
    RigidTransform,
    decompose_rigid,
    nearest_orthonormal,
    validate_affine,
    is_rigid,
)

__all__ = [
    'RigidTransform',
    'decompose_rigid',
    'nearest_orthonormal',
    'validate_affine',
    'is_rigid',
]
