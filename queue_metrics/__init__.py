"""Queue job telemetry: recording, aggregation, baselines and worker liveness."""

__version__ = "0.1.0"
