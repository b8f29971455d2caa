from __future__ import annotations

import pytest

from clipvault.ingest.mime import choose_extension, detect_mime, sniff_mime, wants_thumbnail
from clipvault.ingest.probe import MediaFacts, parse_media_facts
from clipvault.ingest.transcode import needs_transcode


def _payload(**overrides):
    payload = {
        "format": {"duration": "12.345", "format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
        "streams": [
            {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
            {"codec_type": "audio", "codec_name": "aac"},
        ],
    }
    payload.update(overrides)
    return payload


def test_parse_media_facts_reads_duration_dimensions_and_audio():
    facts = parse_media_facts(_payload())
    assert facts == MediaFacts(
        duration_ms=12_345,
        width=1280,
        height=720,
        has_audio=True,
        video_codec="h264",
        container="mov,mp4,m4a,3gp,3g2,mj2",
    )
    assert facts.is_h264_mp4


def test_duration_falls_back_to_video_stream():
    payload = _payload(
        format={"duration": "N/A", "format_name": "matroska,webm"},
        streams=[{"codec_type": "video", "codec_name": "vp9", "width": 640, "height": 360, "duration": "3.5"}],
    )
    facts = parse_media_facts(payload)
    assert facts.duration_ms == 3_500
    assert facts.has_audio is False
    assert not facts.is_h264_mp4


def test_cover_art_is_not_a_video_stream():
    payload = _payload(
        format={"duration": "200.0", "format_name": "mp3"},
        streams=[
            {"codec_type": "audio", "codec_name": "mp3"},
            {"codec_type": "video", "codec_name": "mjpeg", "width": 500, "height": 500, "disposition": {"attached_pic": 1}},
        ],
    )
    facts = parse_media_facts(payload)
    assert facts.width is None
    assert facts.video_codec is None
    assert facts.has_audio is True


def test_default_stream_preferred_over_largest():
    payload = _payload(
        streams=[
            {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080, "disposition": {"default": 0}},
            {"codec_type": "video", "codec_name": "h264", "width": 640, "height": 360, "disposition": {"default": 1}},
        ]
    )
    facts = parse_media_facts(payload)
    assert (facts.width, facts.height) == (640, 360)


def test_empty_payload_yields_unknowns():
    facts = parse_media_facts({})
    assert facts.duration_ms is None
    assert facts.width is None
    assert facts.has_audio is False


@pytest.mark.parametrize(
    "head, expected",
    [
        (b"\x89PNG\r\n\x1a\n" + b"\x00" * 8, "image/png"),
        (b"\xff\xd8\xff\xe0" + b"\x00" * 8, "image/jpeg"),
        (b"GIF89a" + b"\x00" * 8, "image/gif"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"\x00\x00\x00\x18ftypisom\x00\x00", "video/mp4"),
        (b"\x00\x00\x00\x14ftypqt  \x00\x00", "video/quicktime"),
        (b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01webm", "video/webm"),
        (b"plain text, not media", None),
    ],
)
def test_sniff_mime(tmp_path, head, expected):
    path = tmp_path / "blob"
    path.write_bytes(head)
    assert sniff_mime(path) == expected


def test_detect_mime_precedence(tmp_path):
    path = tmp_path / "clip.bin"
    path.write_bytes(b"\x00\x00\x00\x18ftypisom\x00\x00")
    assert detect_mime(path, declared="video/webm") == "video/webm"
    assert detect_mime(path, declared="application/octet-stream", header="video/quicktime; charset=binary") == "video/quicktime"
    assert detect_mime(path, header="application/octet-stream", url="https://cdn.example.com/a.gif") == "image/gif"
    assert detect_mime(path) == "video/mp4"


def test_choose_extension():
    assert choose_extension("video/mp4") == ".mp4"
    assert choose_extension("image/jpeg; q=1") == ".jpg"
    assert choose_extension("application/octet-stream", "https://cdn.example.com/a.webm") == ".webm"
    assert choose_extension(None) == ".bin"


def test_derivative_predicates():
    h264 = MediaFacts(1000, 320, 240, True, "h264", "mov,mp4,m4a,3gp,3g2,mj2")
    hevc = MediaFacts(1000, 320, 240, True, "hevc", "mov,mp4,m4a,3gp,3g2,mj2")
    assert wants_thumbnail("video/mp4")
    assert wants_thumbnail("image/gif")
    assert not wants_thumbnail("image/png")
    assert not needs_transcode("video/mp4", h264)
    assert needs_transcode("video/mp4", hevc)
    assert needs_transcode("video/webm", None)
    assert not needs_transcode("image/gif", None)
