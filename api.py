"""
FastAPI-based REST API for remote control and monitoring of load runs.

Provides endpoints for:
- Health and host resource monitoring
- Starting, stopping and checking a load run
- Summary of recorded virtual user outcomes
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Dict, Optional

import psutil
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from config import LOAD_TEST_CONFIG, FANOUT_STRATEGIES
from reporting.csv_reporter import summarize_outcomes
from shared_state import RUN_OUTCOMES

app = FastAPI(
    title="Realtime Connection Load Test API",
    description="REST API for starting and monitoring realtime connection load runs",
    version="1.0.0"
)

_api_start_time = time.time()

# Track load run status
_run_task: Optional[asyncio.Task] = None
_run_start_time: Optional[float] = None
_run_config: Optional[Dict] = None
_last_error: Optional[str] = None


class HealthStatus(BaseModel):
    """Health status response model."""
    status: str
    timestamp: str
    uptime_seconds: float


class SystemMetrics(BaseModel):
    """System metrics response model."""
    cpu_percent: float
    memory_percent: float
    memory_available_gb: float
    memory_used_gb: float
    memory_total_gb: float


class RunRequest(BaseModel):
    """Load run configuration; unset fields fall back to LOAD_TEST_CONFIG."""
    target: Optional[str] = None
    virtual_users: Optional[int] = Field(default=None, ge=1)
    connections_per_instance: Optional[int] = Field(default=None, ge=1)
    strategy: Optional[str] = None
    think_time_ms: Optional[int] = Field(default=None, ge=0)
    max_concurrent_users: Optional[int] = Field(default=None, ge=1)
    spawn_interval_s: Optional[float] = Field(default=None, ge=0)
    vars: Dict[str, str] = Field(default_factory=dict)


def _is_running() -> bool:
    return _run_task is not None and not _run_task.done()


def build_run_config(request: RunRequest) -> Dict:
    """Merge a RunRequest over LOAD_TEST_CONFIG."""
    if request.strategy is not None and request.strategy not in FANOUT_STRATEGIES:
        raise HTTPException(status_code=422,
                            detail=f"strategy must be one of {', '.join(FANOUT_STRATEGIES)}")

    run_vars = {**(LOAD_TEST_CONFIG.get('vars') or {}), **request.vars}
    if request.connections_per_instance is not None:
        run_vars['CONNECTIONS_PER_INSTANCE'] = request.connections_per_instance
    if request.strategy is not None:
        run_vars['FANOUT_STRATEGY'] = request.strategy
    if request.think_time_ms is not None:
        run_vars['THINK_TIME_MS'] = request.think_time_ms

    run_config = {**LOAD_TEST_CONFIG, 'vars': run_vars}
    for key in ('target', 'virtual_users', 'max_concurrent_users', 'spawn_interval_s'):
        value = getattr(request, key)
        if value is not None:
            run_config[key] = value
    return run_config


async def run_load_test_background(run_config: Dict):
    """Background task running one load test."""
    global _last_error
    from main import launch_and_run

    logging.info("=" * 80)
    logging.info("LOAD TEST STARTED VIA API")
    logging.info("=" * 80)
    try:
        await launch_and_run(run_config)
        _last_error = None
    except asyncio.CancelledError:
        logging.warning("Load test cancelled via API")
        raise
    except Exception as e:
        _last_error = str(e)
        logging.error(f"Error in load test: {e}", exc_info=True)


@app.get("/", response_model=Dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Realtime Connection Load Test API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "system": "/system",
            "runs_start": "/runs/start",
            "runs_status": "/runs/status",
            "runs_stop": "/runs/stop",
            "outcomes": "/outcomes",
        }
    }


@app.get("/health", response_model=HealthStatus)
async def health_check():
    """Health check endpoint."""
    return HealthStatus(
        status="healthy",
        timestamp=datetime.now().isoformat(),
        uptime_seconds=round(time.time() - _api_start_time, 2)
    )


@app.get("/system", response_model=SystemMetrics)
async def system_metrics():
    """Host resource usage of the machine driving the browsers."""
    memory = psutil.virtual_memory()
    return SystemMetrics(
        cpu_percent=psutil.cpu_percent(interval=None),
        memory_percent=memory.percent,
        memory_available_gb=round(memory.available / (1024 ** 3), 2),
        memory_used_gb=round(memory.used / (1024 ** 3), 2),
        memory_total_gb=round(memory.total / (1024 ** 3), 2),
    )


@app.post("/runs/start", response_model=Dict)
async def start_run(request: Optional[RunRequest] = None):
    """
    Start a load run with optional configuration.

    Returns:
        Status of the start operation with the resolved configuration
    """
    global _run_task, _run_start_time, _run_config

    if _is_running():
        raise HTTPException(
            status_code=409,
            detail="A load run is already running. Use /runs/status to check status."
        )

    _run_config = build_run_config(request or RunRequest())
    _run_start_time = time.time()
    _run_task = asyncio.create_task(run_load_test_background(_run_config))

    return {
        'status': 'started',
        'timestamp': datetime.now().isoformat(),
        'config': _run_config,
    }


@app.get("/runs/status", response_model=Dict)
async def run_status():
    """Current state of the load run."""
    running = _is_running()
    return {
        'running': running,
        'elapsed_seconds': round(time.time() - _run_start_time, 2) if running and _run_start_time else None,
        'virtual_users_finished': len(RUN_OUTCOMES),
        'config': _run_config,
        'last_error': _last_error,
    }


@app.post("/runs/stop", response_model=Dict)
async def stop_run():
    """Cancel the running load test."""
    if not _is_running():
        raise HTTPException(status_code=409, detail="No load run is running.")

    _run_task.cancel()
    try:
        await _run_task
    except asyncio.CancelledError:
        pass
    return {'status': 'stopped', 'timestamp': datetime.now().isoformat()}


@app.get("/outcomes", response_model=Dict)
async def outcomes():
    """Summary of the virtual user outcomes recorded so far."""
    return {
        'summary': summarize_outcomes(RUN_OUTCOMES),
        'outcomes': [o.to_dict() for o in RUN_OUTCOMES],
    }


if __name__ == "__main__":
    import uvicorn
    from utils.logging_utils import setup_logging

    setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=8000)
