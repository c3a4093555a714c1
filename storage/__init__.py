"""GlassNet Storage Module

Submodules:
    - connection_store: SQLite history of emitted connections
"""

__all__ = ['connection_store']
