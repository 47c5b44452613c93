import os

import pytest

from spell_vm.config import ENV_PREFIX, load_config


@pytest.fixture(autouse=True)
def _isolated_spell_config(monkeypatch):
    """
    Run every test against the built-in defaults: strip SPELL_VM_* variables
    from the environment and drop the cached config on both sides of the test.
    """
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    load_config.cache_clear()
    yield
    load_config.cache_clear()
