import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from scenewright.config import get_config
from scenewright.llm import LLM, HttpLLM
from scenewright.routes import router
from scenewright.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(data_dir: Path | None = None, llm: LLM | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage = Storage(resolved)
    config = get_config(resolved)

    app = FastAPI(title="Scenewright")
    app.state.storage = storage
    app.state.config = config
    app.state.llm = llm or HttpLLM.from_connection(config.llm)
    app.state.workspaces = {}
    app.include_router(router, prefix="/api")
    return app
