"""Toggle network isolation for the ComfyUI container with tagged iptables rules."""

__version__ = "0.1.0"
