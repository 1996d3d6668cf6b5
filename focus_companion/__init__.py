"""
============================================================
 Focus Companion — Application Factory
============================================================
"""

from focus_companion.config import VERSION

__version__ = VERSION


def create_app(controller=None):
    """Create and configure the FastAPI application."""
    from focus_companion.server import create_app as _create_app
    return _create_app(controller)
