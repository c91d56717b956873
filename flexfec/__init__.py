"""FlexFEC forward error correction for RTP: masks, encoders, a decoder and an interceptor."""

__version__ = "0.1.0"