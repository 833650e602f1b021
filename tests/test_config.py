"""
Tests for configuration loading and template lookup.
"""

import os
import pytest
import yaml
from pathlib import Path

from autoreorient.core.config import (
    ReorientConfig,
    create_default_config,
    default_template_path,
    TEMPLATE_ENV_VAR,
    TEMPLATE_NAME,
)


def test_defaults():
    config = create_default_config()

    assert config.smoothing.reference_fwhm == 8.0
    assert config.smoothing.template_fwhm == 0.0
    assert config.estimation.mode == 'mni'
    assert config.decomposition.max_condition_number == 1e6
    assert config.rollback_on_error is False


def test_yaml_round_trip(tmp_path):
    config = ReorientConfig()
    config.estimation.mode = 'rigid'
    config.estimation.shrink_factors = (2, 1)
    config.estimation.smoothing_sigmas = (1.0, 0.0)
    config.template = '/data/avg152T1.nii'
    path = str(tmp_path / 'nested' / 'config.yaml')

    config.to_yaml(path)
    loaded = ReorientConfig.from_yaml(path)

    assert loaded.to_dict() == config.to_dict()
    assert loaded.estimation.shrink_factors == (2, 1)


def test_shipped_default_yaml_matches_defaults():
    path = Path(__file__).resolve().parent.parent / 'configs' / 'default.yaml'

    loaded = ReorientConfig.from_yaml(str(path))

    assert loaded.to_dict() == ReorientConfig().to_dict()


def test_partial_dict():
    config = ReorientConfig.from_dict({'smoothing': {'reference_fwhm': 6.0}, 'verbose': False})

    assert config.smoothing.reference_fwhm == 6.0
    assert config.smoothing.to_uint8 is True
    assert config.verbose is False


def test_empty_yaml(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text('')

    assert ReorientConfig.from_yaml(str(path)).to_dict() == ReorientConfig().to_dict()


@pytest.mark.parametrize('data', [
    {'smoothing': {'kernel': 'box'}},
    {'unknown_setting': 1},
])
def test_unknown_keys_rejected(data):
    with pytest.raises(ValueError, match="Invalid configuration"):
        ReorientConfig.from_dict(data)


def test_to_dict_is_yaml_safe():
    text = yaml.safe_dump(ReorientConfig().to_dict())

    assert 'max_condition_number' in text


def test_template_from_environment(tmp_path, monkeypatch):
    template = tmp_path / 'my_template.nii'
    template.write_bytes(b'')
    monkeypatch.setenv(TEMPLATE_ENV_VAR, str(template))

    assert default_template_path() == str(template)


def test_template_from_spm_dir(tmp_path, monkeypatch):
    monkeypatch.delenv(TEMPLATE_ENV_VAR, raising=False)
    canonical = tmp_path / 'canonical'
    canonical.mkdir()
    (canonical / TEMPLATE_NAME).write_bytes(b'')
    monkeypatch.setenv('SPM_DIR', str(tmp_path))

    found = default_template_path()

    # A template placed in the package data directory takes precedence
    assert found is not None
    assert os.path.basename(found) == TEMPLATE_NAME


def test_no_template(tmp_path, monkeypatch):
    monkeypatch.setenv(TEMPLATE_ENV_VAR, str(tmp_path / 'missing.nii'))
    monkeypatch.setenv('SPM_DIR', str(tmp_path))
    bundled = Path(__file__).resolve().parent.parent / 'autoreorient' / 'data' / TEMPLATE_NAME
    if bundled.exists():
        pytest.skip("A template is installed in the package data directory")

    assert default_template_path() is None


if __name__ == '__main__':
    pytest.main([__file__])
