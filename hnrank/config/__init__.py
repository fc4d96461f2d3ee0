"""Configuration: pydantic-settings environment model and the YAML loader."""

from hnrank.config.loader import load_config
from hnrank.config.settings import Settings

__all__ = ["Settings", "load_config"]
