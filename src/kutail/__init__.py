"""kutail - tail logs from many Kubernetes pods and containers at once."""

__version__ = "0.1.0"
