"""testfleet - run a device test suite across SSH-reachable worker nodes."""

__version__ = "0.3.0"
