"""Building blocks for a local DNS forwarding proxy: profiles, byte sizes, ARP, discovery and control."""

__version__ = "0.1.0"