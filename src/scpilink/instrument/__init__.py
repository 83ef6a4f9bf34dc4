"""Instruments and their INI configuration."""

from .instconfig import (
    create_default_instruments_file,
    get_package_instruments_dir,
    get_user_instruments_file,
    instrument_from_section,
    list_available_instruments,
    load_instrument,
    load_instruments,
    validate_instrument_config,
)
from .instrument import Instrument

__all__ = [
    "create_default_instruments_file",
    "get_package_instruments_dir",
    "get_user_instruments_file",
    "Instrument",
    "instrument_from_section",
    "list_available_instruments",
    "load_instrument",
    "load_instruments",
    "validate_instrument_config",
]
