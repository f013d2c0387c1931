"""Startup script for the ZN CRM backend.

Runs the terminal front-end by default; ``python run.py api`` serves the
HTTP API with uvicorn instead.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import asyncio


def run_api():
    import uvicorn
    from config.config import load_config

    config = load_config()
    uvicorn.run("zncrm.api.server:app", host=config.api.host, port=config.api.port)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "api":
        run_api()
    else:
        from zncrm.main import main
        try:
            asyncio.run(main())
        except KeyboardInterrupt:
            print("\nExiting...")
            sys.exit(0)
