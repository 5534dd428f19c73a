"""envseal — encrypted secret provisioning and shell environment bootstrap."""

__version__ = "0.1.0"
