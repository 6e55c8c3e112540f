"""hostinit: server bootstrap and configuration over ssh, extensible with plugins."""

__version__ = "1.0.0"
