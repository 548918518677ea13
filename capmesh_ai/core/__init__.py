"""
Core utilities and configuration for CapMesh-AI.

This package provides core functionality including logging configuration,
monitoring, and settings.
"""

from capmesh_ai.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
