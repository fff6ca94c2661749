"""
Startup script for the UAR batch service.

Runs the operator API, the two Celery workers and Celery beat as child
processes and stops all of them when one dies.
"""

import multiprocessing
import subprocess
import sys
import time
import signal
from pathlib import Path
from typing import List

# Add the parent directory to Python path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = str(Path(__file__).parent.parent)


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def _run_command(name: str, args: List[str]):
    try:
        logger.info(f"Starting {name} process")
        subprocess.run([sys.executable, "-m", *args], check=True, cwd=PROJECT_ROOT)
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted by user")


def run_api():
    """Run the operator API"""
    _run_command(
        "API",
        ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", "8000"],
    )


def run_tick_worker():
    """
    Worker for the tick queue.

    Uses the threads pool so overlapping ticks share one process, and with
    it the scheduler's per-handler overlap guard.
    """
    _run_command(
        "Tick worker",
        [
            "celery", "-A", "app.celery", "worker",
            "--loglevel=info",
            "--pool=threads",
            "--concurrency=4",
            "--queues=uar_ticks",
            "--hostname=uar_ticks@%h",
        ],
    )


def run_batch_worker():
    """Worker for on-demand tasks such as completion notifications"""
    _run_command(
        "Batch worker",
        [
            "celery", "-A", "app.celery", "worker",
            "--loglevel=info",
            "--queues=uar_batch",
            "--hostname=uar_batch@%h",
        ],
    )


def run_beat():
    """Celery beat, the source of the minute and daily ticks"""
    Path(PROJECT_ROOT, "tmp").mkdir(exist_ok=True)
    _run_command("Beat", ["celery", "-A", "app.celery", "beat", "--loglevel=info"])


def check_redis_connection():
    """Check if Redis server is accessible"""
    try:
        import redis
        from app.config.settings import settings

        r = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD or None,
            socket_connect_timeout=5,
        )
        r.ping()
        logger.info("Redis connection successful")
        return True
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        logger.error("Please ensure Redis server is running")
        return False


def monitor_processes(processes):
    """Stop everything as soon as one service dies"""
    logger.info("Starting process monitoring")

    while True:
        for process in processes:
            if not process.is_alive():
                logger.error(
                    f"{process.name} process died unexpectedly with exit code: {process.exitcode}"
                )
                terminate_processes(processes)
                sys.exit(1)

        time.sleep(1)


def terminate_processes(processes):
    """Gracefully terminate all processes"""
    logger.info("Initiating graceful shutdown of all services")

    for process in processes:
        if process.is_alive():
            logger.info(f"Terminating {process.name} process")
            process.terminate()

    for process in processes:
        process.join(timeout=10)
        if process.is_alive():
            logger.warning(f"{process.name} did not terminate gracefully, force killing")
            process.kill()
            process.join()
        else:
            logger.info(f"{process.name} terminated successfully")


def main():
    multiprocessing.freeze_support()
    setup_signal_handlers()

    logger.info("=" * 60)
    logger.info("Starting UAR Batch Services (API + Celery workers + beat)")
    logger.info("=" * 60)

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    services = [
        ("API", run_api),
        ("TickWorker", run_tick_worker),
        ("BatchWorker", run_batch_worker),
        ("Beat", run_beat),
    ]
    processes = []

    try:
        for name, target in services:
            process = multiprocessing.Process(target=target, name=name, daemon=False)
            process.start()
            processes.append(process)

        logger.info("All services started")
        logger.info("Operator API: http://localhost:8000/docs")
        logger.info("-" * 60)

        monitor_processes(processes)

    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped")


if __name__ == "__main__":
    main()
