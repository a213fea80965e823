"""Bulletproof desktop controller: supervises bulletproofd and drives connections."""

from bulletproof_ui.constants import VERSION

__version__ = VERSION
