"""
Multi-stage test pod generation.

Compiles ordered test-step descriptors into Kubernetes pod manifests.
"""

__version__ = "0.1.0"
