#!/usr/bin/env python
"""
Run the Streamlit enrollment pricing calculator.

Usage:
    python scripts/run_app.py [--port PORT]
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description='Run the pricing calculator UI')
    parser.add_argument('--port', type=int, default=8501)
    args = parser.parse_args()

    project_root = Path(__file__).parent.parent
    ui_path = project_root / 'src' / 'enrollment_pricing' / 'ui' / 'app_streamlit.py'

    if not ui_path.exists():
        print(f"ERROR: UI module not found at {ui_path}")
        sys.exit(1)

    env = os.environ.copy()
    env.setdefault("ENROLLMENT_PRICING_ROOT", str(project_root))

    cmd = [sys.executable, '-m', 'streamlit', 'run', str(ui_path), '--server.port', str(args.port)]
    print(f"Starting Streamlit: {' '.join(cmd)}")

    try:
        subprocess.run(cmd, cwd=str(project_root), env=env)
    except KeyboardInterrupt:
        print("\nApplication stopped.")


if __name__ == "__main__":
    main()
