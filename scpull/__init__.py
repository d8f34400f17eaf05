"""scpull: receiving side of the scp wire protocol over SSH"""

__version__ = "0.1.0"
