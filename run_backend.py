#!/usr/bin/env python
"""Script to run the Apolo remote store service."""
import os
from pathlib import Path

import uvicorn

# Change to the repository root so the default sqlite path lands here
os.chdir(Path(__file__).resolve().parent)

if __name__ == "__main__":
    uvicorn.run(
        "apolo.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
