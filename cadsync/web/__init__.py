"""
Web API Module
==============

FastAPI-based interface for CADSync control and monitoring.

Author: CADSync Project
License: MIT
"""

from .app import create_app
from .routes import api_router

__all__ = ["create_app", "api_router"]
