# ABOUTME: Pid list managers deciding which objects a migration run processes
# ABOUTME: Supports user-provided pid files and resumable runs via a resume file

import logging
from pathlib import Path
from typing import Protocol

from foxflow.exceptions import PidListError
from foxflow.utils import atomic_write

logger = logging.getLogger(__name__)

RESUME_FILE = "resume.txt"
# Value recorded before any pid has been accepted
INITIAL_PID = "foo"


class PidListManager(Protocol):
    def accept(self, pid: str) -> bool: ...


class UserProvidedPidListManager:
    """
    Accepts only pids listed in a file (one per line).

    Without a file, or with an empty one, every pid is accepted.
    """

    def __init__(self, pid_file: Path | str | None = None):
        self.pids: set[str] = set()
        if pid_file is not None:
            with open(pid_file) as f:
                self.pids = {line.strip() for line in f if line.strip()}
            logger.info(f"Loaded {len(self.pids)} pids from {pid_file}")

    def accept(self, pid: str) -> bool:
        return not self.pids or pid in self.pids

    def finished_processing_all_pids(self, accepted: int) -> bool:
        """True once every listed pid has been accepted."""
        return bool(self.pids) and accepted >= len(self.pids)


class ResumePidListManager:
    """
    Skips objects processed by an earlier run.

    ``resume.txt`` holds the last accepted pid and how many pids had been
    seen at that point. Object sources iterate in a stable order, so on the
    next run the first pids up to that count are skipped. The recorded pid
    must be the one seen just before processing resumes, otherwise the
    source changed and the run stops.

    Args:
        pid_dir: Directory holding the resume file (created if missing)
        accept_all: Accept every pid while still recording progress
    """

    def __init__(self, pid_dir: Path | str, accept_all: bool = False):
        self.pid_dir = Path(pid_dir)
        self.pid_dir.mkdir(parents=True, exist_ok=True)
        self.resume_file = self.pid_dir / RESUME_FILE
        self.accept_all = accept_all
        self.index = 0
        self.value = INITIAL_PID
        self._load_resume_file()

    def _load_resume_file(self):
        if not self.resume_file.exists() or self.resume_file.stat().st_size == 0:
            self._update_resume_file(self.value, self.index)

        lines = self.resume_file.read_text().splitlines()
        try:
            self.resume_value = lines[0]
            self.resume_index = int(lines[1])
        except (IndexError, ValueError) as e:
            raise PidListError(
                f"Corrupt resume file {self.resume_file}",
                recovery_hint="Delete it to start the migration from the beginning",
            ) from e
        logger.debug(
            f"Resume file {self.resume_file}: pid={self.resume_value}, index={self.resume_index}"
        )

    def accept(self, pid: str) -> bool:
        """
        Decide whether ``pid`` still needs processing, recording progress.

        Raises:
            PidListError: If the source order differs from the earlier run
        """
        previous = self.value
        self.value = pid
        self.index += 1

        if self.index - 1 < self.resume_index:
            logger.debug(f"PID: {pid}, accept? {self.accept_all}")
            return self.accept_all

        if self.index - 1 == self.resume_index and previous.lower() != self.resume_value.lower():
            raise PidListError(
                "Number of accept requests does not align with expected PID value! "
                f"index: {self.index}, pid: {pid}, expected pid: {self.resume_value}",
                recovery_hint="The object source changed since the last run; reset the resume file",
            )

        self._update_resume_file(self.value, self.index)
        logger.debug(f"PID: {pid}, accept? True")
        return True

    def reset(self) -> None:
        """Forget all progress."""
        self.index = 0
        self.value = INITIAL_PID
        self._update_resume_file(self.value, self.index)

    def _update_resume_file(self, pid: str, index: int) -> None:
        atomic_write(self.resume_file, f"{pid}\n{index}\n")
