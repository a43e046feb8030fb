"""
Destination adapter config helpers.
"""

from app.migration.config.loader import load_destination_config, load_destination_configs
from app.migration.config.models import DestinationSiteConfig

__all__ = [
    "DestinationSiteConfig",
    "load_destination_config",
    "load_destination_configs",
]
