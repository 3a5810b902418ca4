"""Request desk: role-scoped workflow core for website update requests."""

__version__ = "0.1.0"
