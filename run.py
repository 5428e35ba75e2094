#!/usr/bin/env python3
"""
Local runner: installs the project into .venv (created on first use) and
starts the webhook with uvicorn. HOST and PORT come from the environment.
"""
import os
import subprocess
import venv
from pathlib import Path

ROOT = Path(__file__).parent.resolve()
VENV_DIR = ROOT / ".venv"
PYTHON = VENV_DIR / ("Scripts/python.exe" if os.name == "nt" else "bin/python")


if __name__ == "__main__":
    if not VENV_DIR.exists():
        venv.EnvBuilder(with_pip=True).create(str(VENV_DIR))
    subprocess.check_call([str(PYTHON), "-m", "pip", "install", "-e", str(ROOT)])
    host = os.getenv("HOST", "127.0.0.1")
    port = os.getenv("PORT", "8080")
    print(f"Webhook: http://{host}:{port}/webhook")
    subprocess.check_call([str(PYTHON), "-m", "uvicorn", "sitelog.main:app", "--host", host, "--port", port], cwd=str(ROOT))
