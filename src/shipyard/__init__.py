"""Priority task queue and multi-provider deployment orchestrator."""

__version__ = "0.1.0"
