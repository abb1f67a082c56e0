"""SmsSink: a local mock of a messaging provider API for integration testing."""

__version__ = "1.0.0"
