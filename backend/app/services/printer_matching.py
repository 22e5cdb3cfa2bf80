"""Resolve the printer a Bambu bridge event belongs to.

Matchers are tried in priority order across all printers; the first matcher
that finds a printer wins.
"""

import logging
import re
from collections.abc import Iterable, Sequence

from backend.app.models.printer import Printer

logger = logging.getLogger(__name__)

NOTES_TOKEN_PREFIX = "bambu:"


class SerialMatcher:
    """Strategy that decides whether a printer owns a reported serial."""

    name = "base"

    def matches(self, printer: Printer, serial: str) -> bool:
        raise NotImplementedError


class DedicatedSerialMatcher(SerialMatcher):
    """Exact match on the printer's bambu_serial column."""

    name = "bambu_serial"

    def matches(self, printer: Printer, serial: str) -> bool:
        return printer.bambu_serial is not None and printer.bambu_serial == serial


class NotesTokenMatcher(SerialMatcher):
    """Legacy fallback: a "bambu:<serial>" token somewhere in the free-text notes.

    The serial must not continue past the token, so "bambu:ABC1" does not claim
    a printer noted as "bambu:ABC123".
    """

    name = "notes_token"

    def matches(self, printer: Printer, serial: str) -> bool:
        if not printer.notes:
            return False
        pattern = re.escape(f"{NOTES_TOKEN_PREFIX}{serial}") + r"(?![A-Za-z0-9])"
        return re.search(pattern, printer.notes) is not None


DEFAULT_MATCHERS: tuple[SerialMatcher, ...] = (DedicatedSerialMatcher(), NotesTokenMatcher())


def match_printer(
    printers: Iterable[Printer],
    serial: str,
    matchers: Sequence[SerialMatcher] = DEFAULT_MATCHERS,
) -> Printer | None:
    """Return the first printer claimed by the highest-priority matcher, or None."""
    candidates = list(printers)
    for matcher in matchers:
        for printer in candidates:
            if matcher.matches(printer, serial):
                logger.debug("Serial %s matched printer %s via %s", serial, printer.id, matcher.name)
                return printer
    return None
