#!/usr/bin/env python
"""
Run the Enrollment Pricing API with uvicorn.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT] [--no-reload]
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description='Run the Enrollment Pricing API')
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', type=int, default=8000)
    parser.add_argument('--no-reload', action='store_true', help='Disable auto-reload')
    args = parser.parse_args()

    project_root = Path(__file__).parent.parent

    # Point the engine at this checkout's data/ and rules/ folders
    env = os.environ.copy()
    env.setdefault("ENROLLMENT_PRICING_ROOT", str(project_root))
    src_path = str(project_root / "src")
    env["PYTHONPATH"] = os.pathsep.join(p for p in (src_path, env.get("PYTHONPATH")) if p)

    cmd = [
        sys.executable, "-m", "uvicorn",
        "enrollment_pricing.api.main:app",
        "--host", args.host,
        "--port", str(args.port),
    ]
    if not args.no_reload:
        cmd.append("--reload")

    print(f"Starting Enrollment Pricing API on {args.host}:{args.port}...")
    try:
        subprocess.run(cmd, cwd=str(project_root), env=env)
    except KeyboardInterrupt:
        print("\nAPI stopped.")


if __name__ == "__main__":
    main()
