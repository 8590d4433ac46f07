"""World Manager: lifecycle management for isolated test-fixture worlds."""

__version__ = "0.1.0"
