"""
CSV / JSON reporting module for virtual user outcomes and session logs.
"""
import csv
import json
import logging
import os
import statistics
from datetime import datetime

from shared_state import RUN_OUTCOMES, SESSION_LOGS, PAGE_ERRORS


def _timestamp():
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]


def log_session_event(vu_id, event_type, message, error=None, **kwargs):
    """Log a session-level event to SESSION_LOGS for CSV export.

    Args:
        vu_id: Virtual user identifier
        event_type: Type of event (e.g., 'SESSION_START', 'SESSION_END', 'ERROR', 'INFO')
        message: Event message
        error: Error message if applicable
        **kwargs: Additional metadata (stage, successes, ...)
    """
    SESSION_LOGS.append({
        'vu_id': vu_id,
        'event_type': event_type,
        'message': message,
        'error': error or '',
        'timestamp': _timestamp(),
        **kwargs
    })


def record_outcome(outcome):
    """Keep a RunOutcome for the end-of-run reports."""
    RUN_OUTCOMES.append(outcome)
    return outcome


def summarize_outcomes(outcomes=None):
    """Aggregate counts and connection timings over recorded outcomes."""
    outcomes = RUN_OUTCOMES if outcomes is None else outcomes
    connect_times = [c.elapsed_ms for o in outcomes for c in o.connections if c.connected]
    summary = {
        'virtual_users': len(outcomes),
        'completed': sum(1 for o in outcomes if o.ok),
        'failed': sum(1 for o in outcomes if not o.ok),
        'auth_failures': sum(1 for o in outcomes if o.diagnostics is not None),
        'connections_desired': sum(o.desired for o in outcomes),
        'connections_established': sum(o.successes for o in outcomes),
        'connections_failed': sum(o.failures for o in outcomes),
        'connect_time_ms': {},
    }
    if connect_times:
        connect_times.sort()
        summary['connect_time_ms'] = {
            'min': round(connect_times[0], 1),
            'median': round(statistics.median(connect_times), 1),
            'p95': round(connect_times[min(len(connect_times) - 1, int(len(connect_times) * 0.95))], 1),
            'max': round(connect_times[-1], 1),
        }
    return summary


def write_outcomes_csv(report_dir, outcomes=None):
    """Write one row per connection attempt (one row per failed run without attempts)."""
    outcomes = RUN_OUTCOMES if outcomes is None else outcomes
    if not outcomes:
        logging.warning("No outcomes collected to write to CSV")
        return None

    os.makedirs(report_dir, exist_ok=True)
    filepath = os.path.join(report_dir, f"connections_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv")
    fieldnames = [
        'vu_id', 'strategy', 'desired', 'connection_index', 'connected',
        'connect_time_ms', 'state', 'connection_error', 'run_ok', 'run_error',
        'run_elapsed_s', 'screenshot_path',
    ]

    try:
        with open(filepath, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames, extrasaction='ignore')
            writer.writeheader()
            for outcome in outcomes:
                base = {
                    'vu_id': outcome.vu_id,
                    'strategy': outcome.strategy,
                    'desired': outcome.desired,
                    'run_ok': outcome.ok,
                    'run_error': outcome.error or '',
                    'run_elapsed_s': round(outcome.elapsed_s, 3),
                    'screenshot_path': outcome.diagnostics.screenshot_path if outcome.diagnostics else '',
                }
                if not outcome.connections:
                    writer.writerow(base)
                for conn in outcome.connections:
                    writer.writerow({
                        **base,
                        'connection_index': conn.index,
                        'connected': conn.connected,
                        'connect_time_ms': round(conn.elapsed_ms, 1),
                        'state': conn.state or '',
                        'connection_error': conn.error or '',
                    })
        logging.info(f"✓ Connection report written to: {filepath}")
        return filepath
    except OSError as e:
        logging.error(f"Error writing connection CSV: {e}")
        return None


def write_session_logs_csv(report_dir):
    """Write session logs and page errors to CSV files."""
    if not SESSION_LOGS and not PAGE_ERRORS:
        logging.warning("No session logs collected to write to CSV")
        return None

    os.makedirs(report_dir, exist_ok=True)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    filepath = os.path.join(report_dir, f"session_logs_{timestamp}.csv")
    fieldnames = [
        'vu_id', 'event_type', 'message', 'error', 'timestamp', 'stage',
        'tab_name', 'successes', 'failures', 'elapsed_s',
    ]
    rows = list(SESSION_LOGS) + [
        {
            'vu_id': e.get('vu_id', ''),
            'event_type': e.get('type', 'PAGE_ERROR'),
            'message': e.get('message', ''),
            'timestamp': e.get('timestamp', ''),
            'tab_name': e.get('tab_name', ''),
        }
        for e in PAGE_ERRORS
    ]

    try:
        with open(filepath, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames, extrasaction='ignore')
            writer.writeheader()
            writer.writerows(rows)
        logging.info(f"✓ Session logs written to: {filepath}")
        return filepath
    except OSError as e:
        logging.error(f"Error writing session logs CSV: {e}")
        return None


def write_summary_json(report_dir, outcomes=None):
    """Write the aggregate summary plus every outcome as JSON for downstream tooling."""
    outcomes = RUN_OUTCOMES if outcomes is None else outcomes
    os.makedirs(report_dir, exist_ok=True)
    filepath = os.path.join(report_dir, f"summary_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json")
    payload = {
        'generated_at': datetime.now().isoformat(),
        'summary': summarize_outcomes(outcomes),
        'outcomes': [o.to_dict() for o in outcomes],
    }
    try:
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
        logging.info(f"✓ JSON summary written to: {filepath}")
        return filepath
    except OSError as e:
        logging.error(f"Error writing JSON summary: {e}")
        return None
