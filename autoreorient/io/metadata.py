"""
Spatial metadata stores.

A store reads and writes the voxel-to-world affine of an image without
touching its voxel data.
"""

from abc import ABC, abstractmethod
import io
import os
import shutil
import uuid
import numpy as np
import nibabel as nib
import scipy.io
from nibabel.filebasedimages import ImageFileError
from nibabel.freesurfer.mghformat import MGHHeader, MGHImage
from nibabel.nifti1 import Nifti1Pair
from nibabel.openers import ImageOpener
from nibabel.spatialimages import HeaderDataError
from nibabel.spm99analyze import Spm99AnalyzeImage
from pathlib import Path
from typing import Dict, Tuple

from autoreorient.core.errors import MetadataReadError, MetadataWriteError
from autoreorient.io.loaders import voxel_sizes


# Longest first so '.nii.gz' wins over '.gz'
_KNOWN_EXTENSIONS = (
    '.nii.gz', '.img.gz', '.hdr.gz', '.mgh.gz',
    '.nii', '.img', '.hdr', '.mgh', '.mgz',
)

SFORM_DEFAULT_CODE = 2  # aligned
QFORM_DEFAULT_CODE = 1  # scanner


class MetadataStore(ABC):
    """
    Abstract voxel-to-world affine store.

    set_affine() must be atomic from the caller's point of view: either the
    whole affine is replaced or the image is left unchanged.
    """

    @abstractmethod
    def get_affine(self, image: str) -> np.ndarray:
        """
        Read the current affine.

        Args:
            image: Image identifier

        Returns:
            4x4 voxel-to-world matrix

        Raises:
            MetadataReadError: If the affine cannot be read
        """
        pass

    @abstractmethod
    def set_affine(self, image: str, affine: np.ndarray) -> None:
        """
        Replace the affine.

        Args:
            image: Image identifier
            affine: New 4x4 voxel-to-world matrix

        Raises:
            MetadataWriteError: If the affine cannot be written
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class MemoryMetadataStore(MetadataStore):
    """Affines kept in a dictionary, e.g. for dry runs."""

    def __init__(self, affines: Dict[str, np.ndarray] = None):
        self.affines = {k: np.asarray(v, dtype=np.float64) for k, v in (affines or {}).items()}

    def get_affine(self, image: str) -> np.ndarray:
        if image not in self.affines:
            raise MetadataReadError(image, "unknown image")
        return self.affines[image].copy()

    def set_affine(self, image: str, affine: np.ndarray) -> None:
        self.affines[image] = np.array(affine, dtype=np.float64)


class NiftiMetadataStore(MetadataStore):
    """
    Affine store backed by image headers on disk (via nibabel).

    Only header bytes are rewritten: the voxel payload, its on-disk dtype and
    its scaling are carried over byte for byte. NIfTI-1/2 (single file or
    .hdr/.img pair) and MGH/MGZ store the affine in the header; SPM Analyze
    images get a new .mat sidecar.

    Each rewritten file is produced as a hidden temporary sibling of the real
    file (symlinks are resolved) and then replaces it, so a failed write
    leaves the image untouched. File permissions are kept.
    """

    def get_affine(self, image: str) -> np.ndarray:
        try:
            img = nib.load(str(image))
        except (OSError, ImageFileError) as e:
            raise MetadataReadError(image, f"cannot load image: {e}") from e
        return np.asarray(img.affine, dtype=np.float64)

    def set_affine(self, image: str, affine: np.ndarray) -> None:
        affine = np.asarray(affine, dtype=np.float64)
        if affine.shape != (4, 4) or not np.all(np.isfinite(affine)):
            raise MetadataWriteError(image, f"invalid affine of shape {affine.shape}")

        try:
            img = nib.load(str(image))
        except (OSError, ImageFileError) as e:
            raise MetadataWriteError(image, f"cannot load image: {e}") from e

        try:
            if isinstance(img, Nifti1Pair):
                target, payload = _nifti_header_update(img, affine)
            elif isinstance(img, MGHImage):
                target, payload = _mgh_header_update(img, affine)
            elif isinstance(img, Spm99AnalyzeImage):
                target, payload = _spm_mat_update(img, affine)
            else:
                raise MetadataWriteError(
                    image, f"{img.__class__.__name__} cannot store a full voxel-to-world affine"
                )
            replace_file(target, payload)
        except (OSError, ValueError, HeaderDataError) as e:
            raise MetadataWriteError(image, f"cannot write header: {e}") from e


def _read_raw(path: str) -> bytes:
    """Decompressed file contents."""
    with ImageOpener(path, 'rb') as f:
        return f.read()


def _nifti_header_update(img, affine: np.ndarray) -> Tuple[str, bytes]:
    """Header file of a NIfTI image with sform/qform set to `affine`."""
    target = os.path.realpath(img.file_map['header'].filename)
    raw = _read_raw(target)

    # Read the header as stored; img.header has its scaling and offset reset
    header = img.header_class.from_fileobj(io.BytesIO(raw), check=False)
    _, sform_code = header.get_sform(coded=True)
    _, qform_code = header.get_qform(coded=True)
    header.set_sform(affine, code=int(sform_code) or SFORM_DEFAULT_CODE)
    header.set_qform(affine, code=int(qform_code) or QFORM_DEFAULT_CODE)

    buffer = io.BytesIO()
    header.write_to(buffer)
    block = buffer.getvalue()

    if len(block) > len(raw):
        raise ValueError("updated header is longer than the original file")
    if header.is_single and len(block) > int(header.get_data_offset()):
        raise ValueError("updated header would overlap the voxel data")

    return target, block + raw[len(block):]


def _mgh_header_update(img, affine: np.ndarray) -> Tuple[str, bytes]:
    """MGH/MGZ file with its direction cosines, voxel size and centre set to `affine`."""
    target = os.path.realpath(img.file_map['image'].filename)
    raw = _read_raw(target)

    header = MGHHeader.from_fileobj(io.BytesIO(raw), check=False)
    shape = np.array(header.get_data_shape()[:3], dtype=np.float64)
    zooms = np.array(voxel_sizes(affine))
    header['delta'] = zooms
    header['Mdc'] = (affine[:3, :3] / zooms).T
    header['Pxyz_c'] = affine.dot(np.hstack((shape / 2.0, [1.0])))[:3]
    header['goodRASFlag'] = 1

    buffer = io.BytesIO()
    header.writehdr_to(buffer)
    block = buffer.getvalue()

    if len(block) > len(raw):
        raise ValueError("updated header is longer than the original file")

    return target, block + raw[len(block):]


def _spm_mat_update(img, affine: np.ndarray) -> Tuple[str, bytes]:
    """SPM .mat sidecar holding `affine` (MATLAB 1-based voxel origin)."""
    target = os.path.realpath(img.file_map['mat'].filename)

    flip = np.diag([-1.0, 1.0, 1.0, 1.0]) if img.header.default_x_flip else np.eye(4)
    from_111 = np.eye(4)
    from_111[:3, 3] = -1

    buffer = io.BytesIO()
    scipy.io.savemat(buffer, {'M': flip @ affine @ from_111, 'mat': affine @ from_111}, format='4')
    return target, buffer.getvalue()


def replace_file(target: str, payload: bytes) -> None:
    """
    Atomically replace `target` with `payload`.

    The payload is written (compressed if the name ends in .gz) to a hidden
    sibling that takes over the mode of the existing file, then renamed over
    it.
    """
    base, ext = split_extension(target)
    tmp_path = str(Path(base).parent / f".{Path(base).name}.{uuid.uuid4().hex[:8]}{ext}")

    try:
        with ImageOpener(tmp_path, 'wb') as f:
            f.write(payload)
        if os.path.exists(target):
            shutil.copymode(target, tmp_path)
        os.replace(tmp_path, target)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def split_extension(path: str) -> Tuple[str, str]:
    """
    Split an image path into base and (possibly compound) extension.

    Args:
        path: Image path, e.g. 'sub-01_T1w.nii.gz'

    Returns:
        (base, extension), e.g. ('sub-01_T1w', '.nii.gz')
    """
    lower = path.lower()
    for ext in _KNOWN_EXTENSIONS:
        if lower.endswith(ext):
            return path[:-len(ext)], path[-len(ext):]
    root, ext = os.path.splitext(path)
    return root, ext
