"""
Shared busy flags for the executor.

The job poller and the periodic scheduler each own one flag; every entry point
reads the flags before starting a run so they don't compete for the claude
CLI. Flags are advisory: within one asyncio loop a check and the following set
run without interleaving, but two entry points can still both observe "idle"
across an await boundary. That window is accepted.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

_FLAGS = ("job_running", "check_running")


@dataclass
class BusyState:
    job_running: bool = False
    check_running: bool = False

    def occupant(self) -> Optional[str]:
        """Name of the first flag currently set, or None when idle."""
        for name in _FLAGS:
            if getattr(self, name):
                return name
        return None

    @contextmanager
    def claim(self, flag: str) -> Iterator[None]:
        """Set `flag` for the duration of the block; always cleared on exit."""
        if flag not in _FLAGS:
            raise ValueError(f"Unknown busy flag: {flag}")
        setattr(self, flag, True)
        try:
            yield
        finally:
            setattr(self, flag, False)
