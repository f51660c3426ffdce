"""
KubeVision Agent - forwards per-pod Kubernetes metrics from Prometheus
to the KubeVision backend.
"""

__version__ = "1.0.0"
