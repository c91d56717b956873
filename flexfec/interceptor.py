"""An outgoing RTP stage that adds FlexFEC-03 repair packets after each media batch."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Optional

from flexfec.encoder03 import FlexEncoder03
from flexfec.rtp import RtpHeader, RtpPacket

_logger = logging.getLogger(__name__)

# Number of media packets collected before FEC packets are generated.
DEFAULT_MIN_NUM_MEDIA_PACKETS = 5
# Number of FEC packets generated for each batch of media packets.
FEC_PACKETS_PER_BATCH = 2

Attributes = Optional[Mapping[str, Any]]
RtpWriter = Callable[[RtpHeader, bytes, Attributes], int]


@dataclass
class StreamInfo:
    """What is known about a local stream when it is bound."""

    ssrc: int
    ssrc_forward_error_correction: int = 0
    payload_type_forward_error_correction: int = 0
    payload_type: int = 0
    mime_type: str = ""


class FecInterceptor:
    """Buffers outgoing media packets and sends FEC packets after every full batch."""

    def __init__(self, min_num_media_packets: int = DEFAULT_MIN_NUM_MEDIA_PACKETS) -> None:
        self.min_num_media_packets = min_num_media_packets
        self._packet_buffer: list[RtpPacket] = []
        self._encoder: FlexEncoder03 | None = None
        self._lock = threading.Lock()

    def bind_local_stream(self, info: StreamInfo, writer: RtpWriter) -> RtpWriter:
        """Wrap ``writer`` so that media packets of ``info.ssrc`` are FEC-protected."""
        _logger.info(
            "FecInterceptor bind_local_stream ssrc=%d fec=%d mime_type=%s "
            "payload_type=%d payload_type_fec=%d",
            info.ssrc,
            info.ssrc_forward_error_correction,
            info.mime_type,
            info.payload_type,
            info.payload_type_forward_error_correction,
        )
        media_ssrc = info.ssrc
        encoder = FlexEncoder03(
            info.payload_type_forward_error_correction, info.ssrc_forward_error_correction
        )
        self._encoder = encoder

        def write(header: RtpHeader, payload: bytes, attributes: Attributes = None) -> int:
            if header.ssrc != media_ssrc:
                return writer(header, payload, attributes)
            with self._lock:
                self._packet_buffer.append(
                    RtpPacket(header=copy.deepcopy(header), payload=bytes(payload))
                )
            try:
                return writer(header, payload, attributes)
            finally:
                self._flush_fec(encoder, writer, attributes)

        return write

    def _flush_fec(
        self, encoder: FlexEncoder03, writer: RtpWriter, attributes: Attributes
    ) -> None:
        with self._lock:
            if len(self._packet_buffer) != self.min_num_media_packets:
                return
            batch = self._packet_buffer
            self._packet_buffer = []
        for fec_packet in encoder.encode_fec(batch, FEC_PACKETS_PER_BATCH):
            try:
                writer(fec_packet.header, fec_packet.payload, attributes)
            except Exception as exc:  # a failing writer stops this batch only
                _logger.error("failed to write FEC packet: %s", exc)
                break


FecOption = Callable[[FecInterceptor], None]


class FecInterceptorFactory:
    """Creates FecInterceptor instances, applying the given options to each."""

    def __init__(self, *opts: FecOption) -> None:
        self._opts = list(opts)

    def new_interceptor(self, interceptor_id: str) -> FecInterceptor:
        """Return a new interceptor for the connection named ``interceptor_id``."""
        interceptor = FecInterceptor()
        for option in self._opts:
            option(interceptor)
        return interceptor