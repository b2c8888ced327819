import os

import uvicorn

from dari_insights.app import create_app
from dari_insights.core import settings
from dari_insights.logger import get_logging_config

app = create_app()


def run() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = settings.get_env_int("PORT", 8000, min_value=1)
    uvicorn.run(app, host=host, port=port, log_config=get_logging_config())


if __name__ == "__main__":
    run()
