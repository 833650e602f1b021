#!/usr/bin/env python3
"""
Command-line script for reorienting a session of images to MNI space.

Example usage:
    python auto_reorient.py sub-01_T1w.nii \\
        --others sub-01_PDw.nii sub-01_MTw.nii \\
        --config configs/default.yaml \\
        --save-transform reorient.txt
"""

import sys

from autoreorient.cli import main


if __name__ == '__main__':
    sys.exit(main())
