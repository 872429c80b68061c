"""Scenewright — dev launcher. Starts the API server."""

import argparse
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "127.0.0.1")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Scenewright dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server when source files change")
    args = parser.parse_args()

    # create_app() reads DATA_DIR, also in reload workers
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting backend on http://{HOST}:{BACKEND_PORT} ...")
    uvicorn.run(
        "scenewright.app:create_app",
        factory=True,
        host=HOST,
        port=int(BACKEND_PORT),
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
