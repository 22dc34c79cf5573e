"""
File Log Reporter

End-of-session reporter that writes every finished session's log to
<log_dir>/<session uuid>.txt.
"""

import logging
from pathlib import Path

from extensions.shared.capabilities import Reporter
from extensions.shared.schemas import Session
from extensions.shared.server import ExtensionServer
from extensions.shared.settings import ExtensionSettings

logger = logging.getLogger(__name__)


class FileLogReporter(Reporter):
    """Writes the complete session log to a text file."""

    def __init__(self, output_dir: str = "logs", name: str = "FileReporter", secret: str = "fileReporterSecret"):
        super().__init__(name=name, secret=secret, live=False)
        self.output_dir = Path(output_dir)

    def session_end_log(self, session: Session) -> int:
        logger.info(
            f"Processing session end log. session={session.uuid} "
            f"messagesCount={len(session.context.log)}"
        )

        log_file = self.output_dir / f"{session.uuid}.txt"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(log_file, "w", encoding="utf-8") as f:
                for entry in session.context.log:
                    f.write(f"[{entry.timestamp.isoformat()}] {entry.category}: {entry.message}\n")
        except OSError as e:
            logger.error(f"Failed to write session log to file: {e}", exc_info=True)
            return 500

        logger.info(f"Session log written to file: {log_file}")
        return 200


def main():
    """Main entry point for running the file reporter"""
    print("[FILEREPORTER] Starting File Log Reporter...")
    settings = ExtensionSettings(port=9094)
    ExtensionServer.for_reporter(
        FileLogReporter(output_dir=settings.log_dir),
        settings=settings
    ).run()


if __name__ == "__main__":
    main()
