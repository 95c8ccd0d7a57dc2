"""Storyteller: dev launcher. Starts the API server in watch mode."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Storyteller dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Save-slot and settings directory (default: ./data)")
    parser.add_argument("--provider", choices=["gemini", "local"], default=None,
                        help="Override the configured model provider")
    parser.add_argument("--local-url", default=None,
                        help="Chat-completions URL for the local provider")
    args = parser.parse_args()

    # Build env for the server process so it picks up the same overrides
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())
    if args.provider:
        env["STORYTELLER_PROVIDER"] = args.provider
    if args.local_url:
        env["LOCAL_LLM_URL"] = args.local_url

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    proc = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "backend.app:app", "--reload", "--host", HOST, "--port", BACKEND_PORT],
        cwd=ROOT, env=env,
    )
    try:
        proc.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        proc.terminate()
        proc.wait()


if __name__ == "__main__":
    main()
