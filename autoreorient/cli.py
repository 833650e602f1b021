"""
Command-line interface for auto-reorientation.

Example usage:
    auto-reorient sub-01_T1w.nii \\
        --others sub-01_PDw.nii sub-01_MTw.nii \\
        --template avg152T1.nii \\
        --save-transform reorient.txt
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import yaml

from autoreorient import __version__
from autoreorient.core import AutoReorient, ReorientConfig, ReorientError, NullProgress
from autoreorient.io import save_transform
from autoreorient.preprocessing import REGISTRATION_MODES


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='auto-reorient',
        description='Rigidly reorient a session of images towards MNI space',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Inputs
    parser.add_argument('reference', nargs='?', default=None,
                        help='Reference image registered to the template (prompted if omitted)')
    parser.add_argument('--others', nargs='*', default=None, metavar='PATH',
                        help='Other images of the same session to reorient along with the reference')
    parser.add_argument('--template', default=None,
                        help='Template image in MNI space (default: bundled or SPM avg152T1)')

    # Configuration
    parser.add_argument('--config', default=None,
                        help='Path to YAML configuration file')

    # Override options
    parser.add_argument('--mode', choices=REGISTRATION_MODES,
                        help='Registration mode')
    parser.add_argument('--reference-fwhm', type=float,
                        help='Smoothing applied to the reference before registration (mm)')
    parser.add_argument('--rollback', action='store_true',
                        help='Restore already written headers if a later step fails')

    # Outputs
    parser.add_argument('--save-transform', metavar='PATH',
                        help='Save the applied rigid matrix (.txt or .npy)')
    parser.add_argument('--save-inverse', metavar='PATH',
                        help='Save the inverse of the applied matrix (.txt or .npy)')
    parser.add_argument('--json', metavar='PATH',
                        help='Save a JSON summary of the run')

    # Verbosity
    parser.add_argument('--no-progress', action='store_true',
                        help='Do not show a progress bar')
    parser.add_argument('--quiet', action='store_true',
                        help='Suppress output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    return parser


def prompt_paths(message: str,
                 input_fn: Callable[[str], str] = input,
                 single: bool = False,
                 ) -> List[str]:
    """
    Ask for image paths, one per line; an empty line ends the list.

    Args:
        message: Prompt shown before reading
        input_fn: Line reader (input() by default)
        single: Stop after the first non-empty path

    Returns:
        Entered paths, stripped
    """
    print(message)
    paths = []
    while True:
        try:
            line = input_fn('> ').strip()
        except EOFError:
            break
        if not line:
            break
        paths.append(line)
        if single:
            break
    return paths


def load_cli_config(args: argparse.Namespace) -> ReorientConfig:
    """Configuration file (if any) with command-line overrides applied."""
    if args.config is not None:
        config = ReorientConfig.from_yaml(args.config)
    else:
        config = ReorientConfig()

    if args.template is not None:
        config.template = args.template
    if args.mode is not None:
        config.estimation.mode = args.mode
    if args.reference_fwhm is not None:
        config.smoothing.reference_fwhm = args.reference_fwhm
    if args.rollback:
        config.rollback_on_error = True
    if args.quiet:
        config.verbose = False

    return config


def main(argv: Optional[Sequence[str]] = None,
         reorienter: Optional[AutoReorient] = None,
         input_fn: Callable[[str], str] = input,
         ) -> int:
    """
    Run the command line.

    Args:
        argv: Arguments (sys.argv[1:] if None)
        reorienter: Preconfigured AutoReorient (built from arguments if None)
        input_fn: Line reader used for interactive selection

    Returns:
        Exit code (0 on success, 1 on configuration or reorientation failure)
    """
    args = build_parser().parse_args(argv)
    try:
        config = load_cli_config(args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Error: cannot load configuration: {e}", file=sys.stderr)
        return 1

    reference = args.reference
    others = args.others
    if reference is None:
        selected = prompt_paths('Select the reference image to be reoriented:', input_fn, single=True)
        reference = selected[0] if selected else ''
        if others is None:
            others = prompt_paths(
                'Select the other images to be reoriented along with the reference (empty line to finish):',
                input_fn,
            )
    others = others or []

    if reorienter is None:
        progress = NullProgress() if (args.no_progress or args.quiet) else None
        reorienter = AutoReorient(config, progress=progress)

    try:
        result = reorienter.reorient(reference, config.template, others)
    except ReorientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.save_transform:
        save_transform(args.save_transform, result.matrix)
    if args.save_inverse:
        save_transform(args.save_inverse, result.inverse)
    if args.json:
        Path(args.json).parent.mkdir(parents=True, exist_ok=True)
        with open(args.json, 'w') as f:
            json.dump(result.to_dict(), f, indent=2)

    if not args.quiet:
        print("Reoriented images:")
        for name in result.applied:
            print(f"  - {name}")
        print("Transform:")
        for row in result.matrix:
            print("  " + " ".join(f"{v:10.4f}" for v in row))

    return 0


if __name__ == '__main__':
    sys.exit(main())
