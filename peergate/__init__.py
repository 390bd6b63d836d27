"""HTTP gateway, remote-node client and traffic tooling for peer-to-peer nodes."""

__version__ = "0.1.0"