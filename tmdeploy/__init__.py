"""tmdeploy — deploy the TeslaMate telemetry stack onto a single container host."""

__version__ = "0.1.0"
