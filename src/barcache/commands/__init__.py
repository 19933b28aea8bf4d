"""CLI command implementations for the bar cache.

Each command module provides:
- Configuration loading and validation
- Wiring of the data source, store and provider
"""

from barcache.commands.get_bars import build_provider, load_get_bars_config

__all__ = [
    "build_provider",
    "load_get_bars_config",
]
