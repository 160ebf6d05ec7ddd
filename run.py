# run.py
import os
import sys

import uvicorn

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from naupanel.core.config import HOST, PORT

if __name__ == "__main__":
    print(f"===========================================================")
    print(f" NAUPANEL STARTING...")
    print(f" API URL: http://{HOST}:{PORT}/api")
    print(f" Console socket: ws://{HOST}:{PORT}/ws/console")
    print(f"===========================================================")

    # "naupanel:create_app" refers to the create_app factory in naupanel/__init__.py
    uvicorn.run(
        "naupanel:create_app",
        host=HOST,
        port=PORT,
        reload=os.getenv("RELOAD", "false").lower() in {"1", "true", "yes"},
        factory=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
