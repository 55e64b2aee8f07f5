"""lbcfg: chat commands for enabling and draining load-balancer nodes."""

__version__ = "1.0.0"
