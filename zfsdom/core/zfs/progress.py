"""Classification of ``zfs send -v`` diagnostic lines.

The sender announces the estimated stream size once, then prints one line
per second with the bytes sent so far. Everything else on the combined
stderr of the pipeline (including the receiver's complaints) is kept as a
candidate error.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from ...utils import parse_size

ProgressCallback = Callable[[int, int | None], None]

_SIZE = r"(\d+(?:\.\d+)?[KMGTPE]?(?:i?B)?)"

TOTAL_PATTERN = re.compile(rf"total estimated size is {_SIZE}", re.IGNORECASE)
PROGRESS_PATTERN = re.compile(rf"^\d{{1,2}}:\d{{2}}:\d{{2}}\s+{_SIZE}\s+\S+")
HEADER_PATTERNS = (
    re.compile(r"^TIME\s+SENT\s+SNAPSHOT"),
    re.compile(r"^(full|incremental) send of \S+"),
    re.compile(r"^send from \S+ to \S+"),
)


@dataclass
class SendProgressParser:
    """Stateful parser fed one stderr line at a time."""

    on_progress: ProgressCallback | None = None
    total_bytes: int | None = None
    transferred_bytes: int = 0
    candidate_errors: list[str] = field(default_factory=list)

    def feed(self, line: str) -> str:
        """Classify one line; returns ``total``, ``progress``, ``header`` or ``error``."""
        line = line.strip()
        if not line:
            return "header"

        if match := TOTAL_PATTERN.search(line):
            self.total_bytes = parse_size(match.group(1))
            self._notify()
            return "total"

        if match := PROGRESS_PATTERN.match(line):
            transferred = parse_size(match.group(1))
            if transferred is not None:
                self.transferred_bytes = transferred
                self._notify()
                return "progress"

        if any(pattern.match(line) for pattern in HEADER_PATTERNS):
            return "header"

        self.candidate_errors.append(line)
        return "error"

    @property
    def fraction(self) -> float | None:
        if not self.total_bytes:
            return None
        return min(self.transferred_bytes / self.total_bytes, 1.0)

    def failure_detail(self) -> str:
        """Accumulated diagnostics, minus header noise."""
        return "\n".join(self.candidate_errors)

    def _notify(self) -> None:
        if self.on_progress:
            self.on_progress(self.transferred_bytes, self.total_bytes)
