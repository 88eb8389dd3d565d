# Deploy on Replit: Set secrets and run 'uvicorn server:app --host=0.0.0.0 --port=8000'
import logging

from downto.api import create_app
from downto.mcp_server import mcp

logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler()])

app = create_app()


__all__ = ["app", "mcp"]
