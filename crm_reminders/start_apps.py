"""
Startup script for the reminder API and the Celery worker
Runs both services side by side and stops them together
"""

import multiprocessing
import subprocess
import sys
import time
import signal
from pathlib import Path

# Add the parent directory to Python path to import crm_reminders modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from crm_reminders.config.settings import settings
from crm_reminders.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = str(Path(__file__).parent.parent)


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def _run_service(name: str, command: list):
    try:
        logger.info(f"Starting {name} process")
        subprocess.run(command, check=True, cwd=PROJECT_ROOT)
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted by user")
    except Exception as e:
        logger.error(f"Unexpected error in {name} process: {e}")
        sys.exit(1)


def run_fastapi_app():
    """Run FastAPI server (hosts the /cron/reminders trigger)"""
    command = [
        sys.executable,
        "-m",
        "uvicorn",
        "crm_reminders.main:app",
        "--host",
        "0.0.0.0",
        "--port",
        "8000",
    ]
    if settings.ENVIRONMENT == "development":
        command.append("--reload")
    _run_service("FastAPI", command)


def run_celery_worker():
    """Run Celery worker with an embedded beat scheduler driving the reminder cycle"""
    Path(PROJECT_ROOT, "tmp").mkdir(exist_ok=True)
    _run_service(
        "Celery",
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "crm_reminders.celery",
            "worker",
            "-B",
            "--loglevel=info",
            "--pool=solo",
        ],
    )


def check_redis_connection():
    """Check if Redis server is accessible"""
    try:
        import redis

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


def prepare_database():
    """Create missing tables for local development databases"""
    if settings.ENVIRONMENT != "development":
        return
    from crm_reminders.db.db import create_tables

    create_tables()


def monitor_processes(processes):
    """Monitor running processes and handle failures"""
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
        try:
            process.join(timeout=10)
            if process.is_alive():
                logger.warning(
                    f"{process.name} did not terminate gracefully, force killing"
                )
                process.kill()
                process.join()
            else:
                logger.info(f"{process.name} terminated successfully")
        except Exception as e:
            logger.error(f"Error terminating {process.name}: {e}")


def main():
    """Start and manage the API and the reminder worker"""
    multiprocessing.freeze_support()
    setup_signal_handlers()

    logger.info("=" * 60)
    logger.info(f"Starting {settings.NAME} (FastAPI + Celery worker/beat)")
    logger.info("=" * 60)
    logger.info("Press Ctrl+C to stop all services")

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    prepare_database()

    processes = []

    try:
        logger.info("Starting FastAPI server on http://localhost:8000")
        fastapi_process = multiprocessing.Process(
            target=run_fastapi_app, name="FastAPI", daemon=False
        )
        fastapi_process.start()
        processes.append(fastapi_process)

        logger.info("Waiting for FastAPI to initialize...")
        time.sleep(3)

        logger.info(
            f"Starting Celery worker (reminder cycle every {settings.REMINDER_INTERVAL_SECONDS}s)"
        )
        celery_process = multiprocessing.Process(
            target=run_celery_worker, name="Celery", daemon=False
        )
        celery_process.start()
        processes.append(celery_process)

        logger.info("Both services started successfully")
        logger.info("-" * 60)

        monitor_processes(processes)

    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    except Exception as e:
        logger.error(f"Unexpected error in main process: {e}")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped successfully")


if __name__ == "__main__":
    main()
