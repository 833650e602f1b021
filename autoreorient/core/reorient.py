"""
Auto-reorientation orchestrator.

Reorientation towards MNI space is a standard first step of neuroimage
processing and helps segmentation, which is sensitive to the initial
orientation of the head. A rigid-body transform is estimated by registering a
reference image (with well defined contrast) to an MNI template, and the same
transform is then applied to the reference and to all other images acquired
in the same session. Only the voxel-to-world affines are rewritten; voxel
data is left untouched.
"""

from dataclasses import dataclass, field
import os
import time
import warnings
import numpy as np
from typing import Dict, Iterable, List, Optional, Tuple, Union, Any

from autoreorient.core.config import ReorientConfig, default_template_path
from autoreorient.core.errors import InputError, InversionError, MetadataError
from autoreorient.core.progress import ProgressSink, NullProgress, TqdmProgress
from autoreorient.io.metadata import MetadataStore, NiftiMetadataStore
from autoreorient.preprocessing.registration import TransformEstimator, SitkAffineEstimator
from autoreorient.preprocessing.smoothing import ImageSmoother, VolumeSmoother
from autoreorient.transforms.rigid import RigidTransform, decompose_rigid


ImageReference = Union[str, os.PathLike]


@dataclass
class ReorientationResult:
    """
    Outcome of one reorientation run.

    Attributes:
        files: Reference followed by the other images, in input order,
            including entries that were skipped (duplicates, empty names)
        transform: Rigid transform applied to every image
        inverse: Inverse of the rigid transform matrix
        applied: Images whose affine was actually rewritten, in write order
        estimate: Raw matrix returned by the estimator
        scale: Auxiliary scale estimate, kept as the estimator returned it
        timing: Seconds spent per stage
    """
    files: List[str]
    transform: RigidTransform
    inverse: np.ndarray
    applied: List[str] = field(default_factory=list)
    estimate: Optional[np.ndarray] = None
    scale: Any = None
    timing: Dict[str, float] = field(default_factory=dict)

    @property
    def matrix(self) -> np.ndarray:
        """The applied 4x4 rigid matrix."""
        return np.array(self.transform.matrix)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable summary."""
        return {
            'files': list(self.files),
            'applied': list(self.applied),
            'transform': self.matrix.tolist(),
            'inverse': np.asarray(self.inverse).tolist(),
            'rotation_angle_deg': self.transform.rotation_angle,
            'estimate': None if self.estimate is None else np.asarray(self.estimate).tolist(),
            'scale': None if self.scale is None else np.asarray(self.scale).tolist(),
            'timing': dict(self.timing),
        }


def normalize_identifier(image: Optional[ImageReference]) -> str:
    """Image identifier as a string without surrounding whitespace."""
    if image is None:
        return ''
    return os.fspath(image).strip() if isinstance(image, os.PathLike) else str(image).strip()


class AutoReorient:
    """
    Rigid reorientation of a session's images towards a template.

    All collaborators are optional and default to the on-disk implementations
    built from the configuration.

    Args:
        config: Reorientation configuration (uses default if None)
        smoother: Produces smoothed copies of the reference and template
        estimator: Estimates the affine between them
        store: Reads and writes voxel-to-world affines
        progress: Receives one step per image (reference + others)
    """

    def __init__(self,
                 config: Optional[ReorientConfig] = None,
                 smoother: Optional[ImageSmoother] = None,
                 estimator: Optional[TransformEstimator] = None,
                 store: Optional[MetadataStore] = None,
                 progress: Optional[ProgressSink] = None,
                 ):
        if config is None:
            config = ReorientConfig()

        self.config = config

        if smoother is None:
            smoother = VolumeSmoother(to_uint8=config.smoothing.to_uint8)
        if estimator is None:
            estimator = SitkAffineEstimator.from_config(config.estimation, verbose=config.verbose)
        if store is None:
            store = NiftiMetadataStore()
        if progress is None:
            progress = TqdmProgress() if config.verbose else NullProgress()

        self.smoother = smoother
        self.estimator = estimator
        self.store = store
        self.progress = progress

    def reorient(self,
                 reference: ImageReference,
                 template: Optional[ImageReference] = None,
                 others: Iterable[Optional[ImageReference]] = (),
                 ) -> ReorientationResult:
        """
        Reorient a reference image and its companions.

        Args:
            reference: Image registered to the template
            template: Image already in the target space (defaults to
                config.template, then to the bundled/SPM template)
            others: Images of the same session, reoriented with the reference.
                Empty entries and repeats of an already written image
                (including the reference) are skipped.

        Returns:
            ReorientationResult

        Raises:
            InputError: Missing reference or template; nothing written
            EstimationError: Registration failed; nothing written
            DecompositionError: No proper rigid transform; nothing written
            MetadataError: Reading or writing an image failed; images written
                before it keep their new affine unless rollback_on_error
            InversionError: The applied transform cannot be inverted; raised
                after all writes
        """
        verbose = self.config.verbose
        timing = {}
        t_start = time.time()

        # Step 0: Inputs
        reference = normalize_identifier(reference)
        if not reference:
            raise InputError("A reference image is required")
        template = self._resolve_template(template)

        if isinstance(others, (str, os.PathLike)):
            others = [others]
        others = [normalize_identifier(other) for other in (others or [])]

        if verbose:
            print("=" * 60)
            print("Auto-Reorient to MNI space")
            print("=" * 60)
            print(f"Reference: {reference}")
            print(f"Template:  {template}")
            print(f"Other images: {len(others)}")

        # Step 1: Smoothing (8mm for reference, none for template by default)
        if verbose:
            print("\n[1/4] Smoothing reference and template...")
        t0 = time.time()

        smoothed_reference = self.smoother.smooth(reference, self.config.smoothing.reference_fwhm)
        smoothed_template = self.smoother.smooth(template, self.config.smoothing.template_fwhm)

        timing['smoothing'] = time.time() - t0

        # Step 2: Registration estimate
        if verbose:
            print(f"[2/4] Estimating transform (mode={self.config.estimation.mode})...")
        t0 = time.time()

        estimate, scale = self.estimator.estimate(
            smoothed_template,
            smoothed_reference,
            self.config.estimation.mode,
        )
        estimate = np.asarray(estimate, dtype=np.float64)

        timing['estimation'] = time.time() - t0

        # Step 3: Rigid part of the estimate
        if verbose:
            print("[3/4] Extracting rigid-body transform...")

        rigid = decompose_rigid(estimate, self.config.decomposition.max_condition_number)

        if verbose:
            t = rigid.translation
            print(f"    Rotation: {rigid.rotation_angle:.2f} deg")
            print(f"    Translation: ({t[0]:.2f}, {t[1]:.2f}, {t[2]:.2f}) mm")
            print(f"    Scale estimate: {np.array2string(np.asarray(scale), precision=4)}")

        # Step 4: Apply to reference, then others in input order
        if verbose:
            print(f"[4/4] Applying transform to {1 + len(others)} images...")
        t0 = time.time()

        applied, journal = self._apply_all(rigid, reference, others)

        timing['application'] = time.time() - t0

        try:
            inverse = rigid.inverse
        except InversionError:
            self._maybe_rollback(journal)
            raise

        timing['total'] = time.time() - t_start

        if verbose:
            skipped = 1 + len(others) - len(applied)
            print(f"\n{'=' * 60}")
            print(f"Reoriented {len(applied)} images ({skipped} skipped) in {timing['total']:.2f}s")
            print(f"{'=' * 60}\n")

        return ReorientationResult(
            files=[reference] + others,
            transform=rigid,
            inverse=inverse,
            applied=applied,
            estimate=estimate,
            scale=scale,
            timing=timing,
        )

    def _resolve_template(self, template: Optional[ImageReference]) -> str:
        """Explicit template, else config.template, else the default template."""
        resolved = normalize_identifier(template)
        if not resolved:
            resolved = normalize_identifier(self.config.template)
        if not resolved:
            resolved = normalize_identifier(default_template_path())
        if not resolved:
            raise InputError(
                "A template image is required (none given and no default template found; "
                "set AUTOREORIENT_TEMPLATE or SPM_DIR)"
            )
        return resolved

    def _apply_all(self,
                   rigid: RigidTransform,
                   reference: str,
                   others: List[str],
                   ) -> Tuple[List[str], List[Tuple[str, np.ndarray]]]:
        """Write M @ affine for the reference and each qualifying other image."""
        applied = []
        written = set()
        journal = []

        self.progress.init(1 + len(others))
        try:
            self._apply_one(rigid, reference, journal)
            applied.append(reference)
            written.add(reference)
            self.progress.advance()

            for other in others:
                # Empty names and images already handled (e.g. the reference) are skipped
                if other and other not in written:
                    self._apply_one(rigid, other, journal)
                    applied.append(other)
                    written.add(other)
                self.progress.advance()
        except MetadataError:
            self._maybe_rollback(journal)
            raise
        finally:
            self.progress.clear()

        return applied, journal

    def _apply_one(self,
                   rigid: RigidTransform,
                   image: str,
                   journal: List[Tuple[str, np.ndarray]],
                   ) -> None:
        current = self.store.get_affine(image)
        self.store.set_affine(image, rigid.apply(current))
        journal.append((image, current))

    def _maybe_rollback(self, journal: List[Tuple[str, np.ndarray]]) -> None:
        """Restore journaled affines, newest first, when rollback is enabled."""
        if not self.config.rollback_on_error or not journal:
            return

        if self.config.verbose:
            print(f"Rolling back {len(journal)} images...")

        for image, affine in reversed(journal):
            try:
                self.store.set_affine(image, affine)
            except MetadataError as e:
                warnings.warn(f"Rollback failed for {image}: {e}")

    def __repr__(self) -> str:
        return (f"AutoReorient(mode={self.config.estimation.mode}, "
                f"estimator={self.estimator!r}, store={self.store!r})")


def auto_reorient(reference: ImageReference,
                  template: Optional[ImageReference] = None,
                  others: Iterable[Optional[ImageReference]] = (),
                  config: Optional[ReorientConfig] = None,
                  **collaborators,
                  ) -> ReorientationResult:
    """
    Reorient `reference` and `others` to `template` in one call.

    Keyword arguments smoother, estimator, store and progress are passed to
    AutoReorient.
    """
    return AutoReorient(config, **collaborators).reorient(reference, template, others)
