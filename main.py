"""RPG Turns — dev launcher. Starts the backend and a narration worker."""

import argparse
import asyncio
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def run_worker(data_dir: Path | None) -> None:
    """Run one narration worker in this process until interrupted."""
    from backend import storage
    from backend.narration import NarrationWorker

    storage.init_storage(data_dir or Path(os.getenv("DATA_DIR", "data")))
    worker = NarrationWorker.from_env()
    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("worker %s stopped", worker.worker_id)


def main():
    parser = argparse.ArgumentParser(description="RPG Turns dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--worker-only", action="store_true",
                        help="Run a narration worker in this process, no backend")
    parser.add_argument("--no-worker", action="store_true",
                        help="Start the backend without a narration worker")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.worker_only:
        run_worker(args.data_dir)
        return

    # Build env for subprocesses so every process uses the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    procs: list[subprocess.Popen] = []

    def shutdown(*_):
        print("\nShutting down...")
        for p in procs:
            p.terminate()
        for p in procs:
            p.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    procs.append(subprocess.Popen(
        ["uv", "run", "uvicorn", "backend.app:app", "--reload", "--host", HOST, "--port", BACKEND_PORT],
        cwd=ROOT, env=env,
    ))

    if not args.no_worker:
        print("Starting narration worker ...")
        procs.append(subprocess.Popen(
            [sys.executable, str(ROOT / "main.py"), "--worker-only"],
            cwd=ROOT, env=env,
        ))

    for p in procs:
        p.wait()


if __name__ == "__main__":
    main()
