"""
CADSync

Keeps CAD files consistent across a local folder, a cloud drive folder and a
network share.

Author: CADSync Project
License: MIT
"""

__version__ = "0.1.0"
