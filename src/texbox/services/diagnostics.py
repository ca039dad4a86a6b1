"""
Compiler log summarization.

Turns the raw output of a failed LaTeX run into a short, human-readable
summary. This is a bounded line scan, not a log grammar:

- TeX errors start with ``! `` and are followed, within a few lines, by a
  location marker ``l.<N>``.
- tectonic reports ``error: <file>:<N>: <message>`` with the line inline.
- Timeouts, spawn failures and missing output are identified by the run's
  ``reason``, never by log text: the log echoes the document, so any marker
  text in it may come from the user.
- ``! Emergency stop`` and pdflatex's ``==> Fatal error occurred`` halt line
  get dedicated messages instead of counting as errors.

The raw log is always kept next to the summary.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from ..core.models import Diagnostic, LatexError

OUTPUT_MARKER = "[output]"
NO_OUTPUT_TEXT = "No PDF output generated"

GENERIC_MESSAGE = "Compilation failed; see the raw log below for details."

TIMEOUT_MESSAGE = (
    "Compilation timed out after {limit} and was stopped. "
    "The document may contain an infinite loop or be too large to compile in time."
)
SPAWN_MESSAGE = (
    "The LaTeX compiler could not be started. This is a server configuration problem, "
    "not a problem with your document."
)
NO_OUTPUT_MESSAGE = "No PDF was generated. The compilation failed severely."
TOO_LARGE_MESSAGE = "The generated PDF exceeds the maximum allowed size."
EMERGENCY_MESSAGE = "Emergency stop (check that the document structure is complete, e.g. \\end{document})."
FATAL_MESSAGE = "The compiler halted on an unrecoverable error and produced no PDF."

_TEX_ERROR = re.compile(r"^! (.+)$")
_TEX_LINE = re.compile(r"^l\.(\d+)")
_TECTONIC_ERROR = re.compile(r"^error: (?:(?P<file>[^:\s]+\.tex):(?P<line>\d+): )?(?P<msg>.+)$")
_TIMEOUT_REASON = re.compile(r"^timeout_(\S+)$")

# tectonic kết thúc bằng dòng này khi đã in lỗi cụ thể ở trên
_TECTONIC_NOISE = ("halted on potentially-recoverable error as specified",)
# pdflatex -halt-on-error: "!  ==> Fatal error occurred, no output PDF file produced!"
_TEX_FATAL = "==> Fatal error occurred"


def _find_line(lines: List[str], start: int, lookahead: int) -> Optional[int]:
    for nxt in lines[start + 1 : start + 1 + lookahead]:
        m = _TEX_LINE.match(nxt)
        if m:
            return int(m.group(1))
    return None


def _scan_errors(lines: List[str], lookahead: int) -> Tuple[List[LatexError], bool, bool]:
    """Trả về (errors, emergency_stop, fatal_halt)."""
    errors: List[LatexError] = []
    emergency = fatal = False
    for i, line in enumerate(lines):
        m = _TEX_ERROR.match(line)
        if m:
            msg = m.group(1).strip()
            if msg.startswith("Emergency stop"):
                emergency = True
            elif msg.startswith(_TEX_FATAL):
                fatal = True
            else:
                errors.append(LatexError(msg, _find_line(lines, i, lookahead)))
            continue
        m = _TECTONIC_ERROR.match(line)
        if m:
            msg = m.group("msg").strip()
            if any(noise in msg for noise in _TECTONIC_NOISE):
                continue
            ln = m.group("line")
            errors.append(LatexError(msg, int(ln) if ln else None))
    return errors, emergency, fatal


def _reason_note(reason: Optional[str]) -> Optional[str]:
    if not reason:
        return None
    m = _TIMEOUT_REASON.match(reason)
    if m:
        return TIMEOUT_MESSAGE.format(limit=m.group(1))
    if reason == "spawn_error":
        return SPAWN_MESSAGE
    if reason == "no_output":
        return NO_OUTPUT_MESSAGE
    if reason == "output_too_large":
        return TOO_LARGE_MESSAGE
    return None


def extract(raw_log: str, reason: Optional[str] = None, max_errors: int = 3, lookahead: int = 3) -> Diagnostic:
    """
    ``reason`` is the run's machine-readable cause (``timeout_15s``,
    ``spawn_error``, ``no_output``, ...); it alone selects the
    service-level message.
    """
    raw_log = raw_log or ""
    lines = raw_log.splitlines()

    errors, emergency, fatal = _scan_errors(lines, lookahead)
    shown = errors[:max_errors]

    parts = []
    note = _reason_note(reason)
    if note:
        parts.append(note)
    if emergency:
        parts.append(EMERGENCY_MESSAGE)
    if fatal and not errors and not emergency:
        parts.append(FATAL_MESSAGE)
    parts.extend(f"- {e}" for e in shown)

    hidden = len(errors) - len(shown)
    if hidden > 0:
        parts.append(f"... and {hidden} more error(s); see the raw log for details.")

    if not parts:
        parts.append(GENERIC_MESSAGE)

    return Diagnostic(summary="\n".join(parts), raw_log=raw_log, errors=shown)


def summarize(raw_log: str, reason: Optional[str] = None, max_errors: int = 3, lookahead: int = 3) -> str:
    return extract(raw_log, reason=reason, max_errors=max_errors, lookahead=lookahead).summary
