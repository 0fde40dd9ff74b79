"""Synthesized session descriptions for the browser handshake.

Nothing here negotiates media. Answers mirror the media sections of the
peer's offer and carry fixed ICE/DTLS parameters, so a browser can complete
``setRemoteDescription`` while frames are actually delivered over MJPEG.
"""

from .errors import SignalingError
from .logs import log

CRLF = "\r\n"

SESSION_HEADER = [
    "v=0",
    "o=- 1234567890 2 IN IP4 127.0.0.1",
    "s=-",
    "t=0 0",
]
TRANSPORT_ATTRIBUTES = [
    "a=ice-ufrag:mock123456789",
    "a=ice-pwd:mockpassword123456789012345678901234567890",
    "a=setup:passive",
    "a=fingerprint:sha-256 12:34:56:78:9A:BC:DE:F0:12:34:56:78:9A:BC:DE:F0:"
    "12:34:56:78:9A:BC:DE:F0:12:34:56:78:9A:BC:DE:F0",
]
HOST_CANDIDATE = "a=candidate:1 1 UDP 2122252543 127.0.0.1 9 typ host"
VIDEO_EXTENSIONS = [
    "urn:ietf:params:rtp-hdrext:toffset",
    "http://www.webrtc.org/experiments/rtp-hdrext/abs-send-time",
    "urn:3gpp:video-orientation",
    "http://www.ietf.org/id/draft-holmer-rmcat-transport-wide-cc-extensions-01",
    "http://www.webrtc.org/experiments/rtp-hdrext/playout-delay",
    "http://www.webrtc.org/experiments/rtp-hdrext/video-content-type",
    "http://www.webrtc.org/experiments/rtp-hdrext/video-timing",
    "http://tools.ietf.org/html/draft-ietf-avtext-framemarking-07",
    "http://www.webrtc.org/experiments/rtp-hdrext/color-space",
]


def _video_section(mid, with_extensions=False):
    lines = [
        "m=video 9 UDP/TLS/RTP/SAVPF 96",
        "c=IN IP4 0.0.0.0",
        f"a=mid:{mid}",
        "a=sendonly",
        "a=rtcp-mux",
        "a=rtpmap:96 H264/90000",
        "a=fmtp:96 level-asymmetry-allowed=1;packetization-mode=1;profile-level-id=42e01f",
        "a=rtcp-fb:96 nack",
        "a=rtcp-fb:96 nack pli",
        "a=rtcp-fb:96 ccm fir",
    ]
    if with_extensions:
        lines.extend(f"a=extmap:{index} {uri}" for index, uri in enumerate(VIDEO_EXTENSIONS, start=1))
    return lines


def _audio_section(mid):
    return [
        "m=audio 9 UDP/TLS/RTP/SAVPF 111",
        "c=IN IP4 0.0.0.0",
        f"a=mid:{mid}",
        "a=inactive",
        "a=rtcp-mux",
        "a=rtpmap:111 opus/48000/2",
    ]


def _inactive_section(kind, mid):
    return [
        f"m={kind} 9 UDP/TLS/RTP/SAVPF 0",
        "c=IN IP4 0.0.0.0",
        f"a=mid:{mid}",
        "a=inactive",
    ]


def _join(lines):
    return CRLF.join(lines) + CRLF


def default_description():
    lines = list(SESSION_HEADER)
    lines.append("a=group:BUNDLE 0")
    lines.append("a=msid-semantic: WMS")
    lines.extend(TRANSPORT_ATTRIBUTES)
    lines.extend(_video_section(0, with_extensions=True))
    lines.append(HOST_CANDIDATE)
    return _join(lines)


def parse_media_sections(sdp):
    """Return the media kinds of ``sdp`` in order, e.g. ``["audio", "video"]``."""
    if not isinstance(sdp, str) or not sdp.strip():
        raise SignalingError("Empty session description")
    lines = [line.strip() for line in sdp.replace("\r\n", "\n").split("\n") if line.strip()]
    if not lines or not lines[0].startswith("v="):
        raise SignalingError("Session description must start with a v= line")
    kinds = []
    for line in lines:
        if not line.startswith("m="):
            continue
        parts = line[2:].split()
        if len(parts) < 4 or not parts[0] or not parts[1].isdigit():
            raise SignalingError(f"Malformed media line: {line!r}")
        kinds.append(parts[0].lower())
    if not kinds:
        raise SignalingError("Session description has no media sections")
    return kinds


def answer_for(offer_sdp):
    """Build an answer matching the offer's media layout; never raises."""
    if not offer_sdp:
        return default_description()
    try:
        kinds = parse_media_sections(offer_sdp)
    except SignalingError as exc:
        log(f"[INFO] Offer not usable ({exc}); answering with default description")
        return default_description()

    lines = list(SESSION_HEADER)
    lines.append("a=group:BUNDLE " + " ".join(str(mid) for mid in range(len(kinds))))
    lines.append("a=msid-semantic: WMS")
    lines.extend(TRANSPORT_ATTRIBUTES)
    for mid, kind in enumerate(kinds):
        if kind == "video":
            lines.extend(_video_section(mid))
        elif kind == "audio":
            lines.extend(_audio_section(mid))
        else:
            lines.extend(_inactive_section(kind, mid))
    lines.append(HOST_CANDIDATE)
    return _join(lines)


def local_offer(width, height, fps):
    """Description advertised once the camera goes live."""
    lines = list(SESSION_HEADER)
    lines.append("a=group:BUNDLE 0")
    lines.append("a=msid-semantic: WMS")
    lines.extend(_video_section(0))
    lines.append(f"a=framerate:{int(fps)}")
    lines.append(f"a=imageattr:96 send [x={int(width)},y={int(height)}]")
    lines.extend(TRANSPORT_ATTRIBUTES)
    lines.append(HOST_CANDIDATE)
    return _join(lines)

