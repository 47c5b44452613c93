"""
spell_vm.cli — the ``spell-vm`` command.

    spell-vm compile | inspect | check | run | estimate

See spell_vm.cli.main for examples.
"""

from .main import app

__all__ = ["app"]
