import os

import uvicorn

from app.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    port = int(os.environ.get("PORT", 8000))

    if os.environ.get("ENV", "dev") == "dev":
        uvicorn.run("app.main:app", host="127.0.0.1", port=port, reload=True, log_level=settings.log_level.lower())
    else:
        # judge calls are I/O bound; one worker with the event loop is enough per instance
        uvicorn.run(
            "app.main:app",
            host=os.environ.get("HOST", "0.0.0.0"),
            port=port,
            log_level=settings.log_level.lower(),
            timeout_keep_alive=int(os.environ.get("KEEP_ALIVE_S", 5)),
        )
