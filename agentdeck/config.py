"""
Configuration Loader.

Initializes the global configuration object (`config`) from the defaults in
`agentdeck.core_config`. A YAML override file may be named with
`AGENTDECK_CONFIG_FILE`.

Usage:
    from agentdeck.config import config
    print(config.RUNS.MAX_CONCURRENT)
"""

import logging
import os

from agentdeck.core_config import get_cfg_defaults

logger = logging.getLogger(__name__)

config = get_cfg_defaults()

_override_path = os.environ.get("AGENTDECK_CONFIG_FILE")
if _override_path:
    if os.path.exists(_override_path):
        config.merge_from_file(_override_path)
    else:
        logger.warning("Config override file not found: %s", _override_path)

config.freeze()
