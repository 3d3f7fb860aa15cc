# tests/test_config.py

import logging

import pytest

from semantic_grid.config import (SegmentationOptions, SelectionOptions, SpatialIndexOptions, load_config,
                                  options_from_dict)
from semantic_grid.logging_config import setup_logging
from semantic_grid.types import ConfigError, InvalidResolutionError


def test_defaults():
    selection = SelectionOptions()
    assert selection.color_distance_threshold == 0.32
    assert selection.max_visited_cells == 180
    assert selection.bottom_quantile_reject == 0.15
    assert SpatialIndexOptions().resolution == (20, 20, 20)
    assert SegmentationOptions().min_points_for_label == 10


def test_load_config(tmp_path):
    path = tmp_path / 'grid.yaml'
    path.write_text(
        "spatial_index:\n"
        "  resolution: [8, 16, 8]\n"
        "  crop_y_fraction: [0.0, 0.2]\n"
        "selection:\n"
        "  color_distance_threshold: 0.1\n"
        "  enable_floor_protection: false\n",
        encoding='utf-8',
    )

    config = load_config(path)

    assert config['spatial_index'].resolution == (8, 16, 8)
    assert config['spatial_index'].crop_y_fraction == (0.0, 0.2)
    assert config['selection'].color_distance_threshold == 0.1
    assert config['selection'].enable_floor_protection is False
    assert config['selection'].max_depth == 5
    assert config['segmentation'] == SegmentationOptions()


def test_empty_config_file_gives_defaults(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text("", encoding='utf-8')
    assert load_config(path)['spatial_index'] == SpatialIndexOptions()


@pytest.mark.parametrize("text", [
    "unknown_section: {}\n",
    "selection:\n  not_an_option: 1\n",
    "selection: [1, 2]\n",
    "- just\n- a list\n",
    "spatial_index: {resolution: [1, 2\n",
    "selection:\n  bottom_quantile_reject: 1.5\n",
])
def test_invalid_config_raises(tmp_path, text):
    path = tmp_path / 'bad.yaml'
    path.write_text(text, encoding='utf-8')
    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / 'nope.yaml')


def test_bad_resolution_in_config(tmp_path):
    path = tmp_path / 'res.yaml'
    path.write_text("spatial_index:\n  resolution: [4, 0, 4]\n", encoding='utf-8')
    with pytest.raises(InvalidResolutionError):
        load_config(path)


def test_options_from_dict():
    options = options_from_dict(SelectionOptions, {'max_depth': 2})
    assert options.max_depth == 2
    assert options_from_dict(SegmentationOptions, None) == SegmentationOptions()


def test_setup_logging_replaces_handlers(tmp_path):
    log_file = tmp_path / 'run.log'

    setup_logging(logging.INFO)
    logger = setup_logging(logging.DEBUG, str(log_file))
    logging.getLogger('semantic_grid.test').info("hello from the test")

    assert logger.name == 'semantic_grid'
    assert len(logger.handlers) == 2
    for handler in logger.handlers:
        handler.flush()
    assert "hello from the test" in log_file.read_text(encoding='utf-8')

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
