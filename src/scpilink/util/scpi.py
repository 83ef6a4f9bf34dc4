"""Minimal classification of SCPI response lines.

Only enough of the value grammar to tell strings from numbers is handled here:
the session engine needs to know whether an `*IDN?` answer is text, and callers
get something more useful than raw text for the common numeric answers.
"""

from __future__ import annotations

from typing import Any

ERROR_PREFIX = "**ERROR"


def _parse_number(text: str) -> int | float | None:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def parse_scpi_value(line: str) -> Any:
    """Classify one response line.

    Returns
    -------
    str | int | float | list | dict
        - `{"error": message}` for `**ERROR: ...` lines,
        - an int or float for a single number,
        - a list of numbers for comma separated numbers,
        - a str otherwise (quotes around a single quoted string are removed).
    """
    text = line.strip()

    if text.startswith(ERROR_PREFIX):
        return {"error": text[len(ERROR_PREFIX) :].lstrip(":").strip()}

    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1]

    number = _parse_number(text)
    if number is not None:
        return number

    if "," in text:
        numbers = [_parse_number(part.strip()) for part in text.split(",")]
        if all(n is not None for n in numbers):
            return numbers

    return text


class ScpiValueParser:
    """Default value parser used by connections."""

    def parse(self, line: str) -> Any:
        return parse_scpi_value(line)
