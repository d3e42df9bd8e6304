#!/usr/bin/env python3
"""Run the sessiondb administration service"""
import uvicorn

from sessiondb.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "sessiondb.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
