"""agentflow server entry point."""

import os

import uvicorn
from dotenv import load_dotenv

# Settings are read at import time of the app module.
load_dotenv()

if __name__ == "__main__":
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", 8000))
    reload = os.getenv("DEBUG", "false").lower() == "true"

    print(f"Starting agentflow on {host}:{port}")
    uvicorn.run("agentflow.main:app", host=host, port=port, reload=reload)
