"""BitTorrent building blocks: bitfields, blocklists, magnet links, metainfo, MSE encryption and peer handshakes."""

__version__ = "0.1.0"