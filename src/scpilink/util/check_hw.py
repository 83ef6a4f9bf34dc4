from typing import Optional

import serial.tools.list_ports
from loguru import logger


def get_hw_ports() -> dict[str, tuple[str, str]]:
    """Serial ports with real hardware behind them, as {device: (description, hwid)}."""
    port_dict = dict()
    for p in list(serial.tools.list_ports.comports()):
        # virtual ports report no hardware id
        if p.hwid != "n/a":
            port_dict[p.device] = (p.description, p.hwid)
    return port_dict


def find_port(match: str) -> Optional[str]:
    """First serial port whose device name, description or hwid contains `match`.

    Handy for USB-serial instruments whose device node moves between plugs, e.g.
    `find_port("VID:PID=0483:5740")`.
    """
    for device, (description, hwid) in get_hw_ports().items():
        if match in device or match in description or match in hwid:
            logger.debug("Port {} matches '{}'", device, match)
            return device
    logger.debug("No port matches '{}'", match)
    return None
