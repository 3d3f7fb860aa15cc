# tests/test_cli.py

import json
import logging

import numpy as np
import pytest
from plyfile import PlyData, PlyElement

from semantic_grid.cli import main


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger('semantic_grid')
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def green_cloud(tmp_path):
    rng = np.random.default_rng(11)
    n = 4000
    data = np.zeros(n, dtype=[('x', 'f4'), ('y', 'f4'), ('z', 'f4'),
                              ('red', 'u1'), ('green', 'u1'), ('blue', 'u1')])
    positions = rng.uniform(0.0, 10.0, size=(n, 3))
    data['x'], data['y'], data['z'] = positions[:, 0], positions[:, 1], positions[:, 2]
    data['red'], data['green'], data['blue'] = 50, 150, 50

    path = tmp_path / 'green.ply'
    PlyData([PlyElement.describe(data, 'vertex')]).write(str(path))
    return path


def test_cli_writes_report(tmp_path, green_cloud):
    out = tmp_path / 'out' / 'report.json'

    code = main([str(green_cloud), '--resolution', '4', '4', '4', '--click', '5', '5', '5',
                 '--out', str(out)])

    assert code == 0
    report = json.loads(out.read_text(encoding='utf-8'))
    assert set(report) == {'sourceFile', 'generatedAt', 'build', 'manifest', 'grid', 'selection'}
    assert report['build']['totalPoints'] == 4000
    assert report['grid']['resolution'] == [4, 4, 4]
    assert report['manifest']['gridSummary']['occupiedCells'] == 64
    assert report['manifest']['regionCount'] >= 1
    assert report['selection']['hint'].startswith("Selection hints")


def test_cli_uses_config_file_and_stdout(tmp_path, green_cloud, capsys):
    config = tmp_path / 'cfg.yaml'
    config.write_text("spatial_index:\n  resolution: [2, 2, 2]\n", encoding='utf-8')

    code = main([str(green_cloud), '--config', str(config), '--max-cells', '3'])

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report['grid']['resolution'] == [2, 2, 2]
    assert len(report['grid']['cells']) == 3
    assert 'selection' not in report


def test_cli_missing_file_fails(tmp_path):
    assert main([str(tmp_path / 'missing.ply')]) == 1
