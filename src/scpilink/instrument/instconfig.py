"""Instrument configuration handling.

Instruments are described in INI files, one section per instrument:

[bench-psu]
name = Bench PSU
type = ethernet
address = 192.168.1.50
port = 5025
auto_connect = false

[usb-dmm]
type = serial
port = /dev/ttyUSB0
baud_rate = 115200

[mock]
type = mock
idn = SCPILINK,MOCK-1,0001,0.1
response.MEAS:VOLT? = 1.2345

Only `=` separates keys from values (SCPI commands contain `:`), and keys keep
their case.

Search order when loading:
1. ~/.scpilink/instruments.ini
2. an explicitly given file
3. package/instrument/instruments/*.ini

Later sources never override a section already found in an earlier one.
"""

from __future__ import annotations

from configparser import ConfigParser
from pathlib import Path
from typing import Optional

from loguru import logger

from scpilink.types.config import (
    ConnectionParameters,
    EthernetParameters,
    MockParameters,
    SerialParameters,
)
from scpilink.util.defaults import (
    DEFAULT_BAUD_RATE,
    DEFAULT_ETHERNET_PORT,
    USER_DIR_NAME,
)

from .instrument import Instrument

VALID_TYPES = ("ethernet", "serial", "mock")
RESPONSE_PREFIX = "response."


def _new_parser() -> ConfigParser:
    config = ConfigParser(delimiters=("=",), interpolation=None)
    config.optionxform = str  # keep key case
    return config


def get_user_instruments_file() -> Path:
    return Path.home() / USER_DIR_NAME / "instruments.ini"


def get_package_instruments_dir() -> Path:
    return Path(__file__).parent / "instruments"


def validate_instrument_config(config: ConfigParser, section: str) -> tuple[bool, str]:
    """Validate one instrument section.

    Returns
    -------
    tuple[bool, str]
        (is_valid, error_message)
    """
    sec = config[section]
    if "type" not in sec:
        return False, "Missing required field: type"

    inst_type = sec["type"].strip().lower()
    if inst_type not in VALID_TYPES:
        return False, f"Invalid instrument type: {inst_type}"

    if inst_type == "ethernet" and "address" not in sec:
        return False, "Ethernet instrument requires an address"
    if inst_type == "serial" and "port" not in sec:
        return False, "Serial instrument requires a port"

    for key in ("port", "baud_rate", "chunk_size"):
        if key in sec and not (inst_type == "serial" and key == "port"):
            try:
                int(sec[key])
            except ValueError:
                return False, f"Invalid integer for {key}: {sec[key]}"
    for key in ("auto_connect", "answer_idn", "fail_connect"):
        if key in sec:
            try:
                sec.getboolean(key)
            except ValueError:
                return False, f"Invalid boolean for {key}: {sec[key]}"

    return True, ""


def _parameters_from_section(config: ConfigParser, section: str) -> ConnectionParameters:
    sec = config[section]
    inst_type = sec["type"].strip().lower()
    match inst_type:
        case "ethernet":
            return EthernetParameters(
                address=sec["address"],
                port=sec.getint("port", fallback=DEFAULT_ETHERNET_PORT),
                connect_timeout=sec.getfloat("connect_timeout", fallback=5.0),
            )
        case "serial":
            return SerialParameters(
                port=sec["port"],
                baud_rate=sec.getint("baud_rate", fallback=DEFAULT_BAUD_RATE),
                timeout=sec.getfloat("timeout", fallback=0.05),
            )
        case "mock":
            responses = {
                key[len(RESPONSE_PREFIX) :]: value
                for key, value in sec.items()
                if key.startswith(RESPONSE_PREFIX)
            }
            defaults = MockParameters()
            return MockParameters(
                idn=sec.get("idn", fallback=defaults.idn),
                responses=responses,
                answer_idn=sec.getboolean("answer_idn", fallback=True),
                fail_connect=sec.getboolean("fail_connect", fallback=False),
                latency=sec.getfloat("latency", fallback=0.0),
                chunk_size=sec.getint("chunk_size", fallback=0),
            )
    raise ValueError(f"Invalid instrument type: {inst_type}")


def instrument_from_section(config: ConfigParser, section: str) -> Instrument:
    is_valid, msg = validate_instrument_config(config, section)
    if not is_valid:
        raise ValueError(f"Invalid instrument '{section}': {msg}")
    sec = config[section]
    return Instrument(
        id=section,
        name=sec.get("name", fallback=section),
        connection_parameters=_parameters_from_section(config, section),
        auto_connect=sec.getboolean("auto_connect", fallback=False),
    )


def _config_files(config_path: Optional[str | Path] = None) -> list[tuple[Path, str]]:
    files = [(get_user_instruments_file(), "user")]
    if config_path:
        files.append((Path(config_path), "file"))
    package_dir = get_package_instruments_dir()
    if package_dir.exists():
        files.extend((f, "package") for f in sorted(package_dir.glob("*.ini")))
    return files


def load_instruments(
    config_path: Optional[str | Path] = None, include_package: bool = True
) -> dict[str, Instrument]:
    """Load every valid instrument section, keyed by instrument id.

    Invalid sections are logged and skipped.
    """
    if config_path and not Path(config_path).exists():
        raise FileNotFoundError(f"Instrument config '{config_path}' not found")

    instruments: dict[str, Instrument] = {}
    for file, source in _config_files(config_path):
        if not file.exists() or (source == "package" and not include_package):
            continue
        config = _new_parser()
        config.read(file)
        for section in config.sections():
            if section in instruments:
                continue
            try:
                instruments[section] = instrument_from_section(config, section)
            except ValueError as e:
                logger.error("Skipping instrument from {}: {}", file, e)
                continue
            logger.debug("Loaded instrument {} from {}", section, file)
    return instruments


def load_instrument(name: str, config_path: Optional[str | Path] = None) -> Instrument:
    """Load a single instrument by section name (case-insensitive)."""
    for inst_id, inst in load_instruments(config_path).items():
        if inst_id.lower() == name.lower():
            return inst
    raise ValueError(f"Instrument '{name}' not found")


def list_available_instruments(
    config_path: Optional[str | Path] = None,
) -> dict[str, str]:
    """Map instrument ids to where they come from ('user', 'file' or 'package').

    Does not validate the sections.
    """
    found: dict[str, str] = {}
    for file, source in _config_files(config_path):
        if not file.exists():
            continue
        config = _new_parser()
        config.read(file)
        for section in config.sections():
            found.setdefault(section, source)
    return found


def create_default_instruments_file(file_path: Optional[Path] = None) -> Path:
    """Write an instruments.ini with a mock and an example ethernet instrument.

    Sections already present in the file are preserved.
    """
    if file_path is None:
        file_path = get_user_instruments_file()
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    config = _new_parser()
    config["mock"] = {
        "name": "Mock instrument",
        "type": "mock",
        "idn": MockParameters().idn,
        "response.MEAS:VOLT?": "1.2345",
    }
    config["example-lan"] = {
        "name": "Example LAN instrument",
        "type": "ethernet",
        "address": "192.168.1.50",
        "port": str(DEFAULT_ETHERNET_PORT),
        "auto_connect": "false",
    }

    if file_path.exists():
        existing = _new_parser()
        existing.read(file_path)
        for section in existing.sections():
            if section not in config.sections():
                logger.debug("Preserving existing instrument: {}", section)
                config[section] = {}
            for key, value in existing[section].items():
                config[section][key] = value

    with file_path.open("w") as f:
        config.write(f)
    logger.info("Wrote instrument config to {}", file_path)
    return file_path
