"""vmfleet: control plane for short-lived CI build VMs."""

__version__ = "0.1.0"
