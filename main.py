import os

import uvicorn

from exam_engine.app import app


if __name__ == "__main__":
    host = os.environ.get("EXAM_ENGINE_HOST", "127.0.0.1")
    port = int(os.environ.get("EXAM_ENGINE_PORT", "8000"))
    uvicorn.run(app, host=host, port=port)
