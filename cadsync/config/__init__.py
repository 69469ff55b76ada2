"""
CADSync Configuration Module

This module handles configuration loading, validation, and management for
CADSync. It supports YAML-based configuration with environment variable
overrides.

Author: CADSync Project
License: MIT
"""

__version__ = "0.1.0"
