"""Forward Prometheus metrics from Kubernetes services to Google Cloud Monitoring."""

__version__ = "0.1.0"
