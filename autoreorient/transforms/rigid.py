"""
Rigid-body extraction from general affine matrices.

Strips scale and shear from a 4x4 homogeneous transform using the orthogonal
Procrustes solution, keeping the rotation and a translation re-expressed for
the pure rotation.
"""

from dataclasses import dataclass
import numpy as np

from autoreorient.core.errors import DecompositionError, InversionError


DEFAULT_MAX_CONDITION_NUMBER = 1e6

_BOTTOM_ROW = np.array([0.0, 0.0, 0.0, 1.0])


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """
    Rotation + translation as a read-only 4x4 homogeneous matrix.

    Created by decompose_rigid(); the wrapped array is flagged non-writeable
    so one instance can be applied to many images without being altered.
    """
    matrix: np.ndarray

    def __post_init__(self):
        matrix = np.array(self.matrix, dtype=np.float64)
        matrix.flags.writeable = False
        object.__setattr__(self, 'matrix', matrix)

    @property
    def rotation(self) -> np.ndarray:
        """3x3 rotation block."""
        return self.matrix[:3, :3]

    @property
    def translation(self) -> np.ndarray:
        """Translation column (mm)."""
        return self.matrix[:3, 3]

    @property
    def rotation_angle(self) -> float:
        """Magnitude of the rotation in degrees."""
        cos_angle = (np.trace(self.rotation) - 1.0) / 2.0
        return float(np.degrees(np.arccos(np.clip(cos_angle, -1.0, 1.0))))

    @property
    def inverse(self) -> np.ndarray:
        """
        Matrix inverse, computed by direct inversion.

        Raises:
            InversionError: If the matrix is singular
        """
        try:
            inverse = np.linalg.inv(self.matrix)
        except np.linalg.LinAlgError as e:
            raise InversionError(f"Rigid transform is singular: {e}") from e
        if not np.all(np.isfinite(inverse)):
            raise InversionError("Rigid transform inverse is not finite")
        return inverse

    def apply(self, affine: np.ndarray) -> np.ndarray:
        """Left-multiply a voxel-to-world affine: returns M @ affine."""
        return self.matrix @ np.asarray(affine, dtype=np.float64)

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self.matrix.copy()
        return self.matrix.astype(dtype)

    def __repr__(self) -> str:
        t = ', '.join(f"{v:.2f}" for v in self.translation)
        return f"RigidTransform(angle={self.rotation_angle:.2f}deg, translation=({t}))"


def validate_affine(matrix: np.ndarray) -> np.ndarray:
    """
    Check that a matrix is a finite 4x4 homogeneous transform.

    Args:
        matrix: Candidate affine

    Returns:
        The matrix as a float64 array

    Raises:
        DecompositionError: On wrong shape, non-finite entries or a bottom
            row other than (0, 0, 0, 1)
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise DecompositionError(f"Expected a 4x4 matrix, got shape {matrix.shape}")
    if not np.all(np.isfinite(matrix)):
        raise DecompositionError("Matrix contains NaN or infinite values")
    if not np.allclose(matrix[3], _BOTTOM_ROW):
        raise DecompositionError(f"Bottom row must be (0, 0, 0, 1), got {tuple(matrix[3])}")
    return matrix


def nearest_orthonormal(linear: np.ndarray) -> np.ndarray:
    """
    Closest orthonormal matrix to a 3x3 block (orthogonal Procrustes).

    The result may be a reflection (determinant -1) when the input has a
    negative determinant; callers that need a rotation must check.
    """
    U, _, Vt = np.linalg.svd(np.asarray(linear, dtype=np.float64))
    return U @ Vt


def decompose_rigid(matrix: np.ndarray,
                    max_condition_number: float = DEFAULT_MAX_CONDITION_NUMBER,
                    ) -> RigidTransform:
    """
    Reduce an affine to its rigid-body part.

    With A = U S V^T the linear block of the input and t its translation,
    the rotation is R = U V^T and the translation is R A^-1 t.

    Args:
        matrix: 4x4 homogeneous affine (possibly scaled or sheared)
        max_condition_number: Largest accepted condition number of A

    Returns:
        RigidTransform with a proper rotation block

    Raises:
        DecompositionError: If the matrix is malformed, A is singular or
            ill-conditioned, or the nearest orthonormal matrix is a reflection
    """
    matrix = validate_affine(matrix)
    linear = matrix[:3, :3]
    translation = matrix[:3, 3]

    condition = np.linalg.cond(linear)
    if not np.isfinite(condition) or condition > max_condition_number:
        raise DecompositionError(
            f"Linear block is singular or ill-conditioned (condition number {condition:.3g}, "
            f"limit {max_condition_number:.3g})"
        )

    rotation = nearest_orthonormal(linear)
    determinant = np.linalg.det(rotation)
    if determinant < 0:
        raise DecompositionError(
            f"Nearest orthonormal matrix is a reflection (determinant {determinant:.3f}); "
            "refusing to mirror the images"
        )

    try:
        corrected = rotation @ np.linalg.solve(linear, translation)
    except np.linalg.LinAlgError as e:
        raise DecompositionError(f"Cannot correct translation: {e}") from e

    rigid = np.eye(4)
    rigid[:3, :3] = rotation
    rigid[:3, 3] = corrected
    return RigidTransform(rigid)


def is_rigid(matrix: np.ndarray, atol: float = 1e-6) -> bool:
    """Whether a 4x4 matrix already is a proper rotation + translation."""
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.shape != (4, 4) or not np.allclose(matrix[3], _BOTTOM_ROW, atol=atol):
        return False
    linear = matrix[:3, :3]
    return bool(np.allclose(linear @ linear.T, np.eye(3), atol=atol)
                and np.linalg.det(linear) > 0)
