"""
Exception hierarchy for auto-reorientation.

Every failure surfaced by the package derives from ReorientError so callers
can catch the whole family at once.
"""


class ReorientError(Exception):
    """Base class for all reorientation failures."""


class InputError(ReorientError):
    """Reference or template identifier is empty or cannot be found."""


class EstimationError(ReorientError):
    """The registration estimator failed. No metadata has been written."""


class DecompositionError(ReorientError):
    """
    The estimated matrix cannot be reduced to a proper rigid transform.

    Raised for malformed, singular or ill-conditioned matrices and when the
    nearest orthonormal matrix is a reflection. No metadata has been written.
    """


class InversionError(ReorientError):
    """
    The final rigid matrix could not be inverted.

    Raised after all metadata writes have happened; those writes are not
    undone unless rollback is enabled.
    """


class MetadataError(ReorientError):
    """Base class for spatial metadata store failures."""

    def __init__(self, image: str, message: str):
        self.image = image
        super().__init__(f"{image}: {message}")


class MetadataReadError(MetadataError):
    """Reading the voxel-to-world affine of an image failed."""


class MetadataWriteError(MetadataError):
    """
    Writing the voxel-to-world affine of an image failed.

    Images written earlier in the same run keep their new affine unless
    rollback is enabled.
    """
