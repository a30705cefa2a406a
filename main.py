"""
Load runner: launches many virtual users against the target application and
collects one RunOutcome per virtual user.
"""
# Standard library imports
import argparse
import asyncio
import json
import logging
import os
import sys
import time

# Third-party imports
from dotenv import dotenv_values
from playwright.async_api import async_playwright

# Local imports
from browser.browser_utils import close_quietly
from config import LOAD_TEST_CONFIG, WORKFLOW_DEFAULTS, FANOUT_STRATEGIES
from reporting.csv_reporter import (
    record_outcome,
    summarize_outcomes,
    write_outcomes_csv,
    write_session_logs_csv,
    write_summary_json,
)
from shared_state import RUN_OUTCOMES, PAGE_ERRORS, SESSION_LOGS
from tracking.session_tracker import SessionTracker
from utils.helpers import parse_int
from utils.logging_utils import setup_logging
from utils.resource_calculator import ResourceCalculator
from workflow.errors import WorkflowError
from workflow.outcome import RunOutcome
from workflow.virtual_user import run_virtual_user


def _vu_context_bag(run_config):
    return {'vars': dict(run_config.get('vars') or {}), 'config': {'target': run_config.get('target')}}


def _connections_per_instance(run_config):
    run_vars = {**WORKFLOW_DEFAULTS, **(run_config.get('vars') or {})}
    try:
        return parse_int(run_vars['CONNECTIONS_PER_INSTANCE'], 'CONNECTIONS_PER_INSTANCE')
    except ValueError:
        return 0


def _failed_outcome(vu_id, run_config, error):
    run_vars = {**WORKFLOW_DEFAULTS, **(run_config.get('vars') or {})}
    return RunOutcome(
        vu_id=vu_id,
        strategy=str(run_vars['FANOUT_STRATEGY']),
        desired=_connections_per_instance(run_config),
        error=str(error),
    )


async def run_session_with_context(browser, vu_index, run_config, semaphore, tracker=None):
    """Run one virtual user in its own browser context.

    Never raises for workflow failures; they come back as a failed RunOutcome.
    """
    vu_id = f"VU{vu_index + 1}"
    async with semaphore:
        context = None
        if tracker:
            tracker.register_session(vu_id, _connections_per_instance(run_config))
        try:
            context = await browser.new_context(base_url=run_config.get('target'))
            page = await context.new_page()
            outcome = await run_virtual_user(page, _vu_context_bag(run_config), vu_id=vu_id)
        except WorkflowError as e:
            outcome = e.outcome or _failed_outcome(vu_id, run_config, e)
        except Exception as e:
            logging.error(f"[{vu_id}] Unexpected error in virtual user: {e}", exc_info=True)
            outcome = _failed_outcome(vu_id, run_config, e)
        finally:
            if context is not None:
                await close_quietly(context, "browser context")

    record_outcome(outcome)
    if tracker:
        tracker.record_outcome(vu_id, outcome)
        tracker.unregister_session(vu_id, 'completed' if outcome.ok else 'failed')
    return outcome


async def run_load_test(browser, run_config):
    """Launch ``virtual_users`` virtual users and wait for all of them.

    Returns:
        list of RunOutcome, in launch order
    """
    # Reports cover this run only; the API process runs many in a row
    RUN_OUTCOMES.clear()
    SESSION_LOGS.clear()
    PAGE_ERRORS.clear()
    virtual_users = run_config['virtual_users']
    connections = _connections_per_instance(run_config)
    max_concurrent = run_config.get('max_concurrent_users') or virtual_users

    if run_config.get('dynamic_resource_calculation', False):
        max_concurrent = ResourceCalculator().calculate_max_concurrent_users(
            connections, hard_limit=max_concurrent
        )
    else:
        logging.info("Resource calculation disabled - using config values directly")

    semaphore = asyncio.Semaphore(max(1, max_concurrent))
    spawn_interval = run_config.get('spawn_interval_s', 0) or 0

    logging.info("=" * 80)
    logging.info("LOAD TEST STARTED")
    logging.info(f"Target: {run_config.get('target')}")
    logging.info(f"Virtual Users: {virtual_users}")
    logging.info(f"Connections per Virtual User: {connections}")
    logging.info(f"Total Realtime Connections Desired: {virtual_users * connections}")
    logging.info(f"Max Concurrent Virtual Users: {max_concurrent}")
    logging.info(f"Spawn Interval: {spawn_interval}s")
    logging.info("=" * 80)

    tracker = None
    if run_config.get('enable_session_tracking', True):
        tracker = SessionTracker(
            report_interval=run_config.get('tracking_report_interval', 60),
            report_dir=run_config.get('report_dir', 'reports'),
        )
        tracker.start_tracking()

    start = time.time()
    tasks = []
    try:
        for vu_index in range(virtual_users):
            tasks.append(asyncio.create_task(
                run_session_with_context(browser, vu_index, run_config, semaphore, tracker)
            ))
            if spawn_interval and vu_index < virtual_users - 1:
                await asyncio.sleep(spawn_interval)
        outcomes = list(await asyncio.gather(*tasks))
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            # Let each virtual user finish its teardown before the browser closes
            await asyncio.gather(*pending, return_exceptions=True)
        if tracker:
            await tracker.stop_tracking()

    report_dir = run_config.get('report_dir', 'reports')
    write_outcomes_csv(report_dir, outcomes)
    write_session_logs_csv(report_dir)
    write_summary_json(report_dir, outcomes)

    summary = summarize_outcomes(outcomes)
    logging.info("=" * 80)
    logging.info(f"LOAD TEST COMPLETED in {time.time() - start:.1f}s")
    logging.info(f"Virtual Users: {summary['completed']} completed, {summary['failed']} failed "
                 f"({summary['auth_failures']} auth failures)")
    logging.info(f"Realtime Connections: {summary['connections_established']}/"
                 f"{summary['connections_desired']} established")
    if summary['connect_time_ms']:
        logging.info(f"Connect Time (ms): {summary['connect_time_ms']}")
    logging.info("=" * 80)
    return outcomes


def _parse_var(text):
    key, sep, value = text.partition('=')
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {text!r}")
    return key.strip(), value


def build_parser():
    parser = argparse.ArgumentParser(
        description="Hold many concurrent realtime connections open against a web application."
    )
    parser.add_argument('--target', default=LOAD_TEST_CONFIG['target'], help="Base URL of the application")
    parser.add_argument('--users', type=int, default=LOAD_TEST_CONFIG['virtual_users'],
                        help="Number of virtual users to launch")
    parser.add_argument('--connections', type=int, help="Realtime connections per virtual user")
    parser.add_argument('--strategy', choices=FANOUT_STRATEGIES, help="Fan-out strategy")
    parser.add_argument('--think-time-ms', type=int, help="How long to hold connections open")
    parser.add_argument('--max-concurrent', type=int, default=LOAD_TEST_CONFIG['max_concurrent_users'],
                        help="Cap on virtual users running at once")
    parser.add_argument('--spawn-interval', type=float, default=LOAD_TEST_CONFIG['spawn_interval_s'],
                        help="Seconds between virtual user launches")
    parser.add_argument('--dynamic-resources', action='store_true',
                        default=LOAD_TEST_CONFIG['dynamic_resource_calculation'],
                        help="Cap concurrency based on host memory/CPU")
    parser.add_argument('--headed', action='store_true', help="Show browser windows")
    parser.add_argument('--report-dir', default=LOAD_TEST_CONFIG['report_dir'])
    parser.add_argument('--env-file', metavar='PATH',
                        help="Environment file whose KEY=VALUE pairs become workflow variables")
    parser.add_argument('--var', action='append', type=_parse_var, default=[], metavar='KEY=VALUE',
                        help="Per-run workflow variable (repeatable), e.g. --var COOKIE_NAME=app_session")
    parser.add_argument('--dry-run', action='store_true', help="Print the resolved plan and exit")
    parser.add_argument('--verbose', action='store_true', help="Debug logging")
    return parser


def load_env_file(path):
    """Read workflow variables from an env file. Keys without a value are skipped."""
    values = {key: value for key, value in dotenv_values(path).items() if value is not None}
    logging.info(f"Loaded {len(values)} variable(s) from {path}")
    return values


def build_run_config(args):
    """Merge CLI arguments over LOAD_TEST_CONFIG.

    Workflow vars are layered: config defaults, then ``--env-file``, then
    ``--var``, then the dedicated flags (``--connections`` ...).
    """
    run_vars = dict(LOAD_TEST_CONFIG.get('vars') or {})
    if args.env_file:
        run_vars.update(load_env_file(args.env_file))
    run_vars.update(dict(args.var))
    if args.connections is not None:
        run_vars['CONNECTIONS_PER_INSTANCE'] = args.connections
    if args.strategy:
        run_vars['FANOUT_STRATEGY'] = args.strategy
    if args.think_time_ms is not None:
        run_vars['THINK_TIME_MS'] = args.think_time_ms

    return {
        **LOAD_TEST_CONFIG,
        'target': args.target,
        'virtual_users': args.users,
        'max_concurrent_users': args.max_concurrent,
        'spawn_interval_s': args.spawn_interval,
        'dynamic_resource_calculation': args.dynamic_resources,
        'headless': not args.headed,
        'report_dir': args.report_dir,
        'vars': run_vars,
    }


async def launch_and_run(run_config):
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=run_config.get('headless', True))
        logging.info("Browser started")
        try:
            return await run_load_test(browser, run_config)
        finally:
            await browser.close()


def main(argv=None):
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.env_file and not os.path.isfile(args.env_file):
        parser.error(f"env file not found: {args.env_file}")
    run_config = build_run_config(args)

    if args.dry_run:
        print("DRY_RUN: would run ->")
        print(json.dumps(run_config, indent=2, default=str))
        return 0

    setup_logging(verbose=args.verbose)
    outcomes = asyncio.run(launch_and_run(run_config))
    return 0 if outcomes and all(o.ok for o in outcomes) else 1


if __name__ == '__main__':
    sys.exit(main())
