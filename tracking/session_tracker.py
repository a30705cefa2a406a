"""
Session tracking module for monitoring concurrently running virtual users.
Tracks active virtual users and open connections and logs periodic reports.
"""
import asyncio
import csv
import logging
import os
import time
from datetime import datetime
from typing import Dict, List, Optional


class SessionTracker:
    """Tracks concurrent virtual users and their realtime connections."""

    def __init__(self, report_interval: int = 60, report_dir: str = "reports"):
        """
        Initialize the session tracker.

        Args:
            report_interval: Interval in seconds for periodic reports
            report_dir: Directory for the tracking report CSV
        """
        self.report_interval = report_interval
        self.report_dir = report_dir
        self.sessions: Dict[str, Dict] = {}  # vu_id -> session_data
        self.periodic_reports: List[Dict] = []
        self.tracking_task: Optional[asyncio.Task] = None
        self.is_tracking = False
        self.start_time = None
        self.report_filepath = None

    def register_session(self, vu_id: str, desired_connections: int):
        """Register a virtual user that just started."""
        self.sessions[vu_id] = {
            'vu_id': vu_id,
            'desired_connections': desired_connections,
            'connections_open': 0,
            'connections_failed': 0,
            'start_time': time.time(),
            'status': 'active',
            'errors': 0,
        }
        logging.info(f"[TRACKER] Registered virtual user: {vu_id}")

    def record_outcome(self, vu_id: str, outcome):
        """Store the connection counts of a finished (or failed) run."""
        session = self.sessions.get(vu_id)
        if session is None:
            return
        session['connections_open'] = outcome.successes
        session['connections_failed'] = outcome.failures
        if not outcome.ok:
            session['errors'] += 1

    def unregister_session(self, vu_id: str, reason: str = 'completed'):
        """
        Mark a virtual user inactive.

        Args:
            vu_id: Virtual user identifier
            reason: Reason for unregistering (completed, failed, ...)
        """
        session = self.sessions.get(vu_id)
        if session is None:
            return
        session['status'] = 'inactive'
        session['connections_open'] = 0
        session['end_time'] = time.time()
        session['duration_seconds'] = session['end_time'] - session['start_time']
        session['end_reason'] = reason
        logging.info(f"[TRACKER] Unregistered virtual user: {vu_id} "
                     f"(Reason: {reason}, Duration: {session['duration_seconds']:.2f}s)")

    def get_active_session_count(self) -> int:
        return len([s for s in self.sessions.values() if s['status'] == 'active'])

    def get_session_summary(self) -> Dict:
        """
        Get current summary of all tracked virtual users.

        Returns:
            Dictionary with summary statistics
        """
        sessions = list(self.sessions.values())
        active = [s for s in sessions if s['status'] == 'active']
        return {
            'timestamp': datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3],
            'total_active_sessions': len(active),
            'total_inactive_sessions': len(sessions) - len(active),
            'total_sessions_tracked': len(sessions),
            'connections_open': sum(s['connections_open'] for s in active),
            'connections_failed': sum(s['connections_failed'] for s in sessions),
            'total_errors': sum(s['errors'] for s in sessions),
            'failed_sessions': len([s for s in sessions if s.get('end_reason') == 'failed']),
        }

    def generate_periodic_report(self) -> Dict:
        summary = self.get_session_summary()
        report = {
            'report_time': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            'uptime_seconds': round(time.time() - self.start_time, 2) if self.start_time else 0,
            **summary
        }
        self.periodic_reports.append(report)
        return report

    def log_periodic_report(self, report: Dict):
        """Log the periodic report to console and file."""
        logging.info("=" * 80)
        logging.info(f"PERIODIC SESSION TRACKING REPORT - {report['report_time']}")
        logging.info("=" * 80)
        logging.info(f"Uptime: {report['uptime_seconds']:.2f} seconds")
        logging.info(f"Active Virtual Users: {report['total_active_sessions']}")
        logging.info(f"Finished Virtual Users: {report['total_inactive_sessions']}")
        logging.info(f"Realtime Connections Open: {report['connections_open']}")
        logging.info(f"Realtime Connections Failed: {report['connections_failed']}")
        logging.info(f"Total Errors: {report['total_errors']}")
        logging.info("=" * 80)

    async def periodic_reporting_loop(self):
        """Background task that generates a report every report_interval seconds."""
        logging.info(f"[TRACKER] Starting periodic reporting (interval: {self.report_interval}s)")
        while self.is_tracking:
            await asyncio.sleep(self.report_interval)
            if self.is_tracking:
                report = self.generate_periodic_report()
                self.log_periodic_report(report)
                self.write_tracking_report_csv(report)

    def start_tracking(self):
        """Start the periodic reporting task (needs a running event loop)."""
        if not self.is_tracking:
            self.is_tracking = True
            self.start_time = time.time()
            self.tracking_task = asyncio.create_task(self.periodic_reporting_loop())
            logging.info(f"[TRACKER] Session tracking started (reports every {self.report_interval}s)")

    async def stop_tracking(self):
        """Stop the periodic reporting task and generate the final report."""
        if not self.is_tracking:
            return None
        self.is_tracking = False
        if self.tracking_task:
            self.tracking_task.cancel()
            try:
                await self.tracking_task
            except asyncio.CancelledError:
                pass

        final_report = self.generate_periodic_report()
        self.log_periodic_report(final_report)
        self.write_tracking_report_csv(final_report)
        logging.info("[TRACKER] Session tracking stopped")
        return final_report

    def write_tracking_report_csv(self, report: Dict):
        """Append a report row to this tracker's CSV file."""
        if self.report_filepath is None:
            filename = f"session_tracking_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
            self.report_filepath = os.path.join(self.report_dir, filename)

        fieldnames = [
            'report_time',
            'uptime_seconds',
            'total_active_sessions',
            'total_inactive_sessions',
            'total_sessions_tracked',
            'connections_open',
            'connections_failed',
            'total_errors',
        ]
        try:
            os.makedirs(self.report_dir, exist_ok=True)
            file_exists = os.path.exists(self.report_filepath)
            with open(self.report_filepath, 'a', newline='', encoding='utf-8') as csvfile:
                writer = csv.DictWriter(csvfile, fieldnames=fieldnames, extrasaction='ignore')
                if not file_exists:
                    writer.writeheader()
                writer.writerow(report)
            logging.info(f"[TRACKER] Report written to: {self.report_filepath}")
        except OSError as e:
            logging.error(f"[TRACKER] Error writing tracking report CSV: {e}")
