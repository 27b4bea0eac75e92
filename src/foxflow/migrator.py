# ABOUTME: Batch driver migrating every object of an object source
# ABOUTME: Applies limits and pid filtering and reports per-object failures

import logging
from dataclasses import dataclass, field

from foxflow.exceptions import MigrationError
from foxflow.foxml.sources import FoxmlDirectoryObjectSource
from foxflow.handlers import StreamingObjectHandler
from foxflow.pidlist import ResumePidListManager, UserProvidedPidListManager

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    """Outcome of a migration run."""

    processed: int = 0
    succeeded: int = 0
    failures: dict[str, str] = field(default_factory=dict)


class Migrator:
    """
    Runs every object of a source through a handler.

    Args:
        source: Object source yielding FOXML files
        handler: Decoder callback handler (usually the archive writer chain)
        limit: Maximum number of objects to look at; -1 for no limit
        resume_manager: Skips objects finished by an earlier run
        pid_manager: Restricts the run to user-listed pids
        continue_on_error: Log failing objects and carry on instead of stopping
    """

    def __init__(
        self,
        source: FoxmlDirectoryObjectSource,
        handler: StreamingObjectHandler,
        limit: int = -1,
        resume_manager: ResumePidListManager | None = None,
        pid_manager: UserProvidedPidListManager | None = None,
        continue_on_error: bool = False,
    ):
        self.source = source
        self.handler = handler
        self.limit = limit
        self.resume_manager = resume_manager
        self.pid_manager = pid_manager
        self.continue_on_error = continue_on_error

    def run(self) -> MigrationReport:
        """
        Migrate the source.

        Returns:
            Counts of processed objects and the failures that were skipped

        Raises:
            MigrationError: On the first failure unless continue_on_error is set
        """
        report = MigrationReport()
        index = 0
        accepted = 0

        for path in self.source.paths():
            try:
                decoder = self.source.open(path)
            except MigrationError as e:
                self._fail(report, str(path), f"UNREADABLE_OBJECT: {e}", e)
                continue

            with decoder:
                pid = decoder.object_info.pid
                if not (self.limit < 0 or index < self.limit):
                    logger.info(f"Reached processing limit {self.limit}")
                    break
                index += 1

                if self._accept(pid):
                    logger.info(f'Processing "{pid}"...')
                    accepted += 1
                    report.processed += 1
                    try:
                        decoder.process(self.handler)
                        report.succeeded += 1
                    except Exception as e:
                        self._fail(report, pid, str(e), e)

            if self.pid_manager is not None and self.pid_manager.finished_processing_all_pids(
                accepted
            ):
                logger.info("Finished processing everything in the pid list")
                break

        logger.info(
            f"Migration finished: {report.succeeded} of {report.processed} objects migrated, "
            f"{len(report.failures)} failures"
        )
        return report

    def _accept(self, pid: str) -> bool:
        if self.resume_manager is not None and not self.resume_manager.accept(pid):
            return False
        if self.pid_manager is not None and not self.pid_manager.accept(pid):
            return False
        return True

    def _fail(self, report: MigrationReport, pid: str, message: str, error: Exception) -> None:
        line = f'MIGRATION_FAILURE: pid="{pid}", message="{message}"'
        if not self.continue_on_error:
            logger.error(line)
            raise error
        logger.error(line, exc_info=error)
        report.failures[pid] = message
