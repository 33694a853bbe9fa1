"""gallerica - show a random image from a set of folders, controllable over IPC."""

__version__ = '0.3.0'
