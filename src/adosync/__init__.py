"""adosync - keep Azure DevOps work item hierarchies in sync."""

__version__ = "0.1.0"
