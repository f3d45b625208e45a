"""Longbox core package.

Modules:
- engine: archive engine (reader, writer, listing cache, extraction coordinator)
- formats / backends: container sniffing and RAR / 7-Zip backends
- scanner: three-phase library scan (discovery, metadata, covers)
- database / models / repository: SQLite persistence via SQLModel
- monitor: Watchdog-based filesystem monitoring
- config: INI parsing and config object
"""

__version__ = "0.1.0"
