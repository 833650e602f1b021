"""
Tests for the auto-reorient command line.
"""

import json
import pytest
import numpy as np
import yaml

from autoreorient.cli import build_parser, load_cli_config, main, prompt_paths
from autoreorient.core import AutoReorient, ReorientConfig, NullProgress
from autoreorient.io import MemoryMetadataStore, load_transform
from autoreorient.preprocessing import ImageSmoother, SmoothedImage, TransformEstimator


class FakeSmoother(ImageSmoother):
    def smooth(self, image, fwhm):
        return SmoothedImage(volume=np.zeros((4, 4, 4)), affine=np.eye(4), source=image, fwhm=fwhm)


class FakeEstimator(TransformEstimator):
    def __init__(self, matrix):
        self.matrix = matrix

    def estimate(self, template, moving, mode='mni'):
        return self.matrix, 1.1


def lines(*values):
    """input() replacement returning `values` in turn, then EOF."""
    remaining = list(values)

    def read(prompt=''):
        if not remaining:
            raise EOFError
        return remaining.pop(0)
    return read


@pytest.fixture
def estimate():
    a = np.radians(10.0)
    m = np.eye(4)
    m[:2, :2] = [[np.cos(a), -np.sin(a)], [np.sin(a), np.cos(a)]]
    m[:3, :3] *= 1.1
    m[:3, 3] = [2.0, 4.0, -1.0]
    return m


@pytest.fixture
def store():
    return MemoryMetadataStore({name: np.eye(4) for name in ('R.nii', 'O1.nii', 'O2.nii')})


@pytest.fixture
def reorienter(store, estimate):
    return AutoReorient(
        ReorientConfig(verbose=False),
        smoother=FakeSmoother(),
        estimator=FakeEstimator(estimate),
        store=store,
        progress=NullProgress(),
    )


def test_main_writes_outputs(tmp_path, reorienter, store, capsys):
    transform_path = str(tmp_path / 'out' / 'reorient.txt')
    inverse_path = str(tmp_path / 'out' / 'reorient_inv.npy')
    json_path = str(tmp_path / 'out' / 'summary.json')

    code = main([
        'R.nii', '--others', 'O1.nii', 'O2.nii', '--template', 'T.nii',
        '--save-transform', transform_path,
        '--save-inverse', inverse_path,
        '--json', json_path,
    ], reorienter=reorienter)

    assert code == 0
    matrix = load_transform(transform_path)
    assert np.allclose(store.get_affine('O2.nii'), matrix, atol=1e-9)
    assert np.allclose(load_transform(inverse_path) @ matrix, np.eye(4), atol=1e-9)
    with open(json_path) as f:
        summary = json.load(f)
    assert summary['files'] == ['R.nii', 'O1.nii', 'O2.nii']
    assert "Reoriented images:" in capsys.readouterr().out


def test_main_interactive_selection(reorienter, store):
    code = main(['--template', 'T.nii'], reorienter=reorienter,
                input_fn=lines('R.nii', 'O1.nii', '  ', 'O2.nii'))

    assert code == 0
    assert not np.allclose(store.get_affine('R.nii'), np.eye(4))
    assert not np.allclose(store.get_affine('O1.nii'), np.eye(4))
    # Selection ended at the blank line
    assert np.allclose(store.get_affine('O2.nii'), np.eye(4))


def test_main_reports_errors(reorienter, capsys):
    code = main(['--template', 'T.nii'], reorienter=reorienter, input_fn=lines())

    assert code == 1
    assert "reference" in capsys.readouterr().err


def test_main_unknown_image(reorienter, capsys):
    code = main(['R.nii', '--others', 'missing.nii', '--template', 'T.nii', '--quiet'],
                reorienter=reorienter)

    captured = capsys.readouterr()
    assert code == 1
    assert "missing.nii" in captured.err
    assert captured.out == ''


def test_prompt_paths_single():
    assert prompt_paths('Select:', lines(' a.nii ', 'b.nii'), single=True) == ['a.nii']
    assert prompt_paths('Select:', lines('a.nii', 'b.nii')) == ['a.nii', 'b.nii']


def test_cli_overrides(tmp_path):
    config_path = str(tmp_path / 'config.yaml')
    base = ReorientConfig()
    base.smoothing.template_fwhm = 4.0
    base.to_yaml(config_path)

    args = build_parser().parse_args([
        'R.nii', '--config', config_path, '--mode', 'rigid',
        '--reference-fwhm', '6', '--rollback', '--quiet',
    ])
    config = load_cli_config(args)

    assert config.smoothing.template_fwhm == 4.0
    assert config.smoothing.reference_fwhm == 6.0
    assert config.estimation.mode == 'rigid'
    assert config.rollback_on_error is True
    assert config.verbose is False


def test_main_missing_config(tmp_path, reorienter, capsys):
    code = main(['R.nii', '--config', str(tmp_path / 'absent.yaml')], reorienter=reorienter)

    assert code == 1
    assert "Error" in capsys.readouterr().err


def test_main_invalid_config(tmp_path, reorienter, store, capsys):
    config_path = tmp_path / 'config.yaml'
    config_path.write_text(yaml.safe_dump({'unknown_setting': 1}))

    code = main(['R.nii', '--config', str(config_path)], reorienter=reorienter)

    assert code == 1
    assert "unknown_setting" in capsys.readouterr().err
    assert np.allclose(store.get_affine('R.nii'), np.eye(4))


def test_parser_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        build_parser().parse_args(['R.nii', '--mode', 'nonlinear'])


if __name__ == '__main__':
    pytest.main([__file__])
