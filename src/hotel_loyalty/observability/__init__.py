"""Process-local telemetry stores and tracing setup."""
