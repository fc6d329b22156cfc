import gzip
import json

import numpy as np

from sdmeta_backend.features.metadata.stealth import (
    MAGIC_PLAIN,
    BitCursor,
    extract_stealth_metadata,
    map_stealth_json,
    read_bytes,
    read_u32,
)

from helpers import A1111_TEXT, stealth_envelope, stealth_json_pixels, stealth_pixels

STEALTH_DATA = {
    "prompt": "hidden prompt",
    "negative_prompt": "hidden negative",
    "steps": 28,
    "sampler": "k_euler",
    "cfg_scale": 5.0,
    "seed": 1234,
    "size": "64x64",
    "model": "nai",
}


def test_decodes_compressed_json_payload():
    record = extract_stealth_metadata(64, 64, stealth_json_pixels(STEALTH_DATA))
    assert record is not None
    assert record.to_dict() == {
        "prompt": "hidden prompt",
        "negative_prompt": "hidden negative",
        "steps": "28",
        "sampler": "k_euler",
        "cfg_scale": "5",
        "seed": "1234",
        "size": "64x64",
        "model": "nai",
    }


def test_one_bit_magic_corruption_is_not_present():
    pixels = bytearray(stealth_json_pixels(STEALTH_DATA))
    pixels[3] ^= 1  # alpha LSB of the first pixel = first magic bit
    assert extract_stealth_metadata(64, 64, bytes(pixels)) is None


def test_oversize_bit_length_is_not_present():
    payload = gzip.compress(json.dumps(STEALTH_DATA).encode())
    bits = stealth_envelope(payload, bit_length=64 * 64)
    assert extract_stealth_metadata(64, 64, stealth_pixels(bits)) is None


def test_zero_bit_length_is_not_present():
    bits = stealth_envelope(b"", bit_length=0)
    assert extract_stealth_metadata(64, 64, stealth_pixels(bits)) is None


def test_invalid_gzip_or_json_is_not_present():
    not_gzip = stealth_pixels(stealth_envelope(b"plain bytes, not gzip"))
    not_json = stealth_pixels(stealth_envelope(gzip.compress(b"[1, 2, 3]")))
    assert extract_stealth_metadata(64, 64, not_gzip) is None
    assert extract_stealth_metadata(64, 64, not_json) is None


def test_short_buffer_and_pixel_limit():
    pixels = stealth_json_pixels(STEALTH_DATA)
    assert extract_stealth_metadata(64, 64, pixels[:100]) is None
    assert extract_stealth_metadata(64, 64, pixels, max_pixels=1000) is None
    assert extract_stealth_metadata(8, 8, pixels) is None  # too small to hold a header


def test_plain_pnginfo_variant_parses_a1111_text():
    bits = stealth_envelope(A1111_TEXT.encode("utf-8"), magic=MAGIC_PLAIN)
    record = extract_stealth_metadata(64, 64, stealth_pixels(bits))
    assert record.parameters == A1111_TEXT
    assert record.prompt == "best quality, 1girl"
    assert record.seed == "42"


def test_novelai_comment_inside_payload():
    data = {
        "Description": "a cat",
        "Software": "NovelAI",
        "Comment": json.dumps({"uc": "bad hands", "steps": 28, "scale": 5, "seed": 99, "sampler": "k_euler"}),
    }
    record = map_stealth_json(data)
    assert record.prompt == "a cat"
    assert record.negative_prompt == "bad hands"
    assert record.cfg_scale == "5"


def test_parameters_only_payload_runs_a1111_parser():
    record = map_stealth_json({"parameters": A1111_TEXT})
    assert record.parameters == A1111_TEXT
    assert record.model == "foo"


def test_bit_cursor_is_immutable():
    bits = np.unpackbits(np.frombuffer(b"\x00\x00\x01\x00AB", dtype=np.uint8))
    start = BitCursor(bits)
    value, after_u32 = read_u32(start)
    assert value == 256
    assert start.position == 0
    assert after_u32.position == 32
    raw, end = read_bytes(after_u32, 2)
    assert raw == b"AB"
    assert end.remaining == 0
    assert read_bytes(end, 1) is None
