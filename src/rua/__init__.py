"""
Rua - Extension runtime for the Rua command launcher

Validates, installs, loads and permission-gates third-party extensions.
"""

__version__ = "0.1.0"
