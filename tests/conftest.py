import sys
from pathlib import Path

import pytest

# Add project root to sys.path so 'agentdeck' imports without installation
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def temp_data_dir(tmp_path):
    from agentdeck.config import config

    old_data_dir = config.SYSTEM.DATA_DIR
    config.defrost()
    config.SYSTEM.DATA_DIR = str(tmp_path / "data")
    config.freeze()
    try:
        yield tmp_path / "data"
    finally:
        config.defrost()
        config.SYSTEM.DATA_DIR = old_data_dir
        config.freeze()


@pytest.fixture
def backend_registry():
    from agentdeck.services.backend_registry import BackendRegistry

    return BackendRegistry.from_directory()
