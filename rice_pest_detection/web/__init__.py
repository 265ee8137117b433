"""Web interface for the rice pest detection system."""

from .app import PestDetectionWebApp, create_app

__all__ = ['PestDetectionWebApp', 'create_app']
