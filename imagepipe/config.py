# -*- coding: utf-8 -*-
import json
import logging
import os
from typing import Any, Dict

from .errors import ConfigError

LOGGER_NAME = "imagepipe"

log_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(threadName)s: %(message)s', datefmt='%Y-%m-%d %H:%M:%S')


def setup_logging(verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        log_handler = logging.StreamHandler()
        log_handler.setFormatter(log_formatter)
        logger.addHandler(log_handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logger


def load_config_from_file(config_path: str) -> Dict[str, Any]:
    """
    Loads a JSON configuration file whose keys are command line option names
    (e.g. "threads", "directory", "quality", "filter").
    """
    abs_config_path = os.path.abspath(config_path)
    try:
        with open(abs_config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {abs_config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Configuration file parsing error ({abs_config_path}): {e}") from e
    except OSError as e:
        raise ConfigError(f"Error loading configuration file ({abs_config_path}): {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigError(f"Configuration file must contain a JSON object: {abs_config_path}")
    logging.getLogger(LOGGER_NAME).info(f"  -> Info: Configuration file loaded successfully: {abs_config_path}")
    return {key.replace("-", "_"): value for key, value in config_data.items()}
