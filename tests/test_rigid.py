"""
Unit tests for rigid-body extraction.
"""

import pytest
import numpy as np

from autoreorient.core.errors import DecompositionError
from autoreorient.transforms import RigidTransform, decompose_rigid, is_rigid, nearest_orthonormal


def rotation(axis, degrees):
    """4x4 rotation about a coordinate axis."""
    a = np.radians(degrees)
    c, s = np.cos(a), np.sin(a)
    i, j = [(1, 2), (2, 0), (0, 1)][axis]
    m = np.eye(4)
    m[i, i], m[i, j], m[j, i], m[j, j] = c, -s, s, c
    return m


def random_rotation(rng):
    """Random proper 3x3 rotation."""
    q, r = np.linalg.qr(rng.normal(size=(3, 3)))
    q = q @ np.diag(np.sign(np.diag(r)))
    if np.linalg.det(q) < 0:
        q[:, 0] = -q[:, 0]
    return q


def test_removes_scale_and_keeps_rotation():
    """30 degree rotation with 1.2x scale gives back the pure rotation."""
    rot = rotation(2, 30)
    matrix = rot.copy()
    matrix[:3, :3] *= 1.2
    matrix[:3, 3] = [10.0, -4.0, 2.5]

    rigid = decompose_rigid(matrix)

    assert np.allclose(np.linalg.norm(rigid.rotation, axis=0), 1.0, atol=1e-6)
    assert np.allclose(rigid.rotation, rot[:3, :3], atol=1e-10)
    assert abs(rigid.rotation_angle - 30.0) < 1e-6


def test_translation_corrected_for_scale():
    """For A = s R the corrected translation is t / s."""
    matrix = rotation(0, -15)
    matrix[:3, :3] *= 1.25
    matrix[:3, 3] = [5.0, 10.0, -20.0]

    rigid = decompose_rigid(matrix)

    assert np.allclose(rigid.translation, [4.0, 8.0, -16.0], atol=1e-10)


def test_random_affines_give_proper_rotations():
    """Scaled and sheared matrices with positive determinant."""
    rng = np.random.default_rng(0)

    for _ in range(50):
        shear = np.eye(3) + np.triu(rng.uniform(-0.2, 0.2, size=(3, 3)), k=1)
        linear = random_rotation(rng) @ np.diag(rng.uniform(0.6, 1.8, size=3)) @ shear
        matrix = np.eye(4)
        matrix[:3, :3] = linear
        matrix[:3, 3] = rng.uniform(-50, 50, size=3)

        R = decompose_rigid(matrix).rotation

        assert np.allclose(R @ R.T, np.eye(3), atol=1e-10)
        assert abs(np.linalg.det(R) - 1.0) < 1e-10


def test_rigid_input_is_fixed_point():
    """A rotation + translation comes back unchanged."""
    matrix = rotation(0, 10) @ rotation(1, -25) @ rotation(2, 40)
    matrix[:3, 3] = [1.5, -3.0, 12.0]

    rigid = decompose_rigid(matrix)

    assert np.allclose(rigid.matrix, matrix, atol=1e-10)
    assert is_rigid(rigid.matrix)


def test_inverse_matches_direct_inversion():
    matrix = rotation(1, 20)
    matrix[:3, :3] *= 0.9
    matrix[:3, 3] = [3.0, 2.0, 1.0]

    rigid = decompose_rigid(matrix)

    assert np.allclose(rigid.inverse, np.linalg.inv(rigid.matrix), atol=1e-12)
    assert np.allclose(rigid.inverse @ rigid.matrix, np.eye(4), atol=1e-12)


def test_singular_matrix_raises():
    matrix = np.eye(4)
    matrix[2, 2] = 0.0

    with pytest.raises(DecompositionError):
        decompose_rigid(matrix)


def test_ill_conditioned_matrix_raises():
    matrix = np.diag([1.0, 1.0, 1e-9, 1.0])

    with pytest.raises(DecompositionError, match="ill-conditioned"):
        decompose_rigid(matrix)

    # Accepted once the threshold allows it
    decompose_rigid(matrix, max_condition_number=1e12)


def test_reflection_raises():
    """A negative determinant would mirror the images."""
    matrix = rotation(2, 30)
    matrix[:, 0] = -matrix[:, 0]
    matrix[3, 0] = 0.0

    with pytest.raises(DecompositionError, match="reflection"):
        decompose_rigid(matrix)


@pytest.mark.parametrize('matrix', [
    np.eye(3),
    np.eye(5),
    np.array([[1, 0, 0, 0], [0, 1, 0, 0], [0, 0, 1, 0], [0.5, 0, 0, 1]]),
    np.full((4, 4), np.nan),
])
def test_malformed_matrix_raises(matrix):
    with pytest.raises(DecompositionError):
        decompose_rigid(matrix)


def test_transform_is_read_only():
    rigid = decompose_rigid(rotation(0, 5))

    with pytest.raises(ValueError):
        rigid.matrix[0, 3] = 100.0


def test_apply_left_multiplies():
    rigid = RigidTransform(rotation(2, 90))
    affine = np.diag([2.0, 2.0, 2.0, 1.0])
    affine[:3, 3] = [-10.0, 0.0, 5.0]

    assert np.allclose(rigid.apply(affine), rotation(2, 90) @ affine)
    assert np.allclose(np.asarray(rigid), rotation(2, 90))


def test_nearest_orthonormal_keeps_reflection():
    """Only decompose_rigid() refuses reflections."""
    R = nearest_orthonormal(np.diag([-2.0, 1.0, 3.0]))

    assert np.allclose(R, np.diag([-1.0, 1.0, 1.0]))


def test_is_rigid():
    assert is_rigid(rotation(1, 33))
    assert not is_rigid(np.diag([1.1, 1.0, 1.0, 1.0]))
    assert not is_rigid(np.diag([-1.0, 1.0, 1.0, 1.0]))
    assert not is_rigid(np.eye(3))


if __name__ == '__main__':
    pytest.main([__file__])
