"""
Procedural remap service: re-layout of layered designs into target containers.
"""

__version__ = "0.6.0"
