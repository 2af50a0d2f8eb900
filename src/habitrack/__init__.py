"""habitrack - habit progress and streak tracking with an MCP surface."""

__version__ = "0.1.0"
