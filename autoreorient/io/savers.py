"""
Save and load 4x4 transformation matrices.
"""

import numpy as np
from pathlib import Path


def save_transform(path: str, matrix: np.ndarray) -> None:
    """
    Save a 4x4 matrix.

    Format is determined by file extension: '.npy' for a NumPy array,
    anything else for whitespace-separated text.

    Args:
        path: Output file path
        matrix: 4x4 matrix
    """
    path = Path(path)
    matrix = np.asarray(matrix, dtype=np.float64)

    if matrix.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 matrix, got shape {matrix.shape}")

    # Create output directory if needed
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == '.npy':
        np.save(path, matrix)
    else:
        np.savetxt(path, matrix, fmt='%.10g')


def load_transform(path: str) -> np.ndarray:
    """
    Load a 4x4 matrix saved with save_transform().

    Args:
        path: Path to matrix file

    Returns:
        matrix: 4x4 float64 array
    """
    path = Path(path)

    if path.suffix.lower() == '.npy':
        matrix = np.load(path)
    else:
        matrix = np.loadtxt(path)

    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 matrix in {path}, got shape {matrix.shape}")

    return matrix
