"""
Live Dashboard Reporter

Live reporter that appends every log event to a per-session file and keeps
an HTML overview of the sessions it has seen.
"""

import html
import logging
import threading
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict

from extensions.shared.capabilities import Reporter
from extensions.shared.server import ExtensionServer
from extensions.shared.settings import ExtensionSettings

logger = logging.getLogger(__name__)


class LiveDashboardReporter(Reporter):
    """Maintains <output_dir>/dashboard.html and <output_dir>/<session>.log."""

    def __init__(
        self,
        output_dir: str = "logs",
        name: str = "LiveDashboardReporter",
        secret: str = "liveDashboardSecret"
    ):
        super().__init__(name=name, secret=secret, live=True)
        self.output_dir = Path(output_dir)
        self.dashboard_path = self.output_dir / "dashboard.html"
        self._lock = threading.Lock()
        self._event_counts: Dict[str, int] = {}

    def live_log(self, session_id: str, category: str, message: str) -> int:
        timestamp = datetime.now(UTC).isoformat()
        try:
            with self._lock:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                with open(self.output_dir / f"{session_id}.log", "a", encoding="utf-8") as f:
                    f.write(f"[{timestamp}] {category}: {message}\n")
                self._event_counts[session_id] = self._event_counts.get(session_id, 0) + 1
                self._write_dashboard()
        except OSError as e:
            logger.error(f"Failed to write live session log: {e}", exc_info=True)
            return 500
        return 200

    def event_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._event_counts)

    def _write_dashboard(self) -> None:
        rows = "".join(
            f"<tr><td>{html.escape(session_id)}</td><td>{count}</td>"
            f"<td><a href='{html.escape(session_id)}.log'>View Log</a></td></tr>"
            for session_id, count in sorted(self._event_counts.items())
        )
        self.dashboard_path.write_text(
            "<html><head><title>Live Dashboard</title></head><body>"
            "<h1>Live Sessions Dashboard</h1>"
            "<table><tr><th>Session ID</th><th>Events</th><th>Log</th></tr>"
            f"{rows}</table></body></html>",
            encoding="utf-8"
        )


def main():
    """Main entry point for running the live dashboard reporter"""
    print("[DASHBOARD] Starting Live Dashboard Reporter...")
    settings = ExtensionSettings(port=9095)
    ExtensionServer.for_reporter(
        LiveDashboardReporter(output_dir=settings.log_dir),
        settings=settings
    ).run()


if __name__ == "__main__":
    main()
