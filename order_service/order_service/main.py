"""Main entry point for the Order Service."""

import os

import uvicorn

from order_service.server import create_app

if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
