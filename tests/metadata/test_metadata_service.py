import json

import piexif
import piexif.helper

from sdmeta_backend.features.metadata import service as service_module
from sdmeta_backend.features.metadata.fallback_readers import Raster, TagValue, empty_tag_tree
from sdmeta_backend.features.metadata.service import Tier, extract_metadata
from sdmeta_shared.types import ErrorCode

from helpers import (
    A1111_TEXT,
    itxt_chunk,
    jpeg_bytes,
    jpeg_with_exif,
    jpeg_with_segment,
    pillow_png,
    png_chunk,
    raw_png,
    riff_webp,
    stealth_json_pixels,
    stealth_png,
    ztxt_chunk,
)

A1111_RECORD = {
    "prompt": "best quality, 1girl",
    "negative_prompt": "lowres",
    "steps": "20",
    "sampler": "Euler a",
    "cfg_scale": "7",
    "seed": "42",
    "size": "512x768",
    "model": "foo",
    "parameters": A1111_TEXT,
}

NOVELAI_COMMENT = json.dumps({"uc": "bad hands", "steps": 28, "scale": 5, "seed": 99, "sampler": "k_euler"})

STEALTH_DATA = {"prompt": "hidden prompt", "steps": 30, "seed": 7, "sampler": "k_euler_ancestral"}


def _empty_tags(_buffer):
    return empty_tag_tree()


def _private_chunk_png():
    return raw_png(png_chunk(b"prVt", b"\x00" + A1111_TEXT.encode("utf-8") + b"\x00"))


def test_png_parameters_chunk_end_to_end():
    res = extract_metadata(pillow_png({"parameters": A1111_TEXT}))
    assert res.ok, res.error
    assert res.data.to_dict() == A1111_RECORD
    assert res.meta == {}


def test_png_novelai_chunks_end_to_end():
    data = pillow_png({"Software": "NovelAI", "Description": "a cat", "Comment": NOVELAI_COMMENT})
    res = extract_metadata(data)
    assert res.ok, res.error
    assert res.data.to_dict() == {
        "prompt": "a cat",
        "negative_prompt": "bad hands",
        "steps": "28",
        "cfg_scale": "5",
        "seed": "99",
        "sampler": "k_euler",
    }


def test_ztxt_and_itxt_give_the_same_record(service_factory):
    service = service_factory()
    ztxt = service.extract(raw_png(ztxt_chunk("parameters", A1111_TEXT)))
    itxt = service.extract(raw_png(itxt_chunk("parameters", A1111_TEXT, compressed=True)))
    assert ztxt.data.to_dict() == itxt.data.to_dict() == A1111_RECORD


def test_png_workflow_chunk_only(service_factory):
    workflow = {
        "nodes": [
            {"id": 1, "type": "CLIPTextEncode", "widgets_values": ["a red fox"]},
            {"id": 2, "type": "CLIPTextEncode", "widgets_values": ["blurry"]},
        ],
        "links": [],
    }
    res = service_factory().extract(pillow_png({"workflow": json.dumps(workflow)}))
    assert res.ok, res.error
    assert res.data.prompt == "a red fox"
    assert res.data.negative_prompt == "blurry"
    assert "Node: CLIPTextEncode" in res.data.parameters


def test_stealth_png_alpha_payload(service_factory):
    res = service_factory().extract(stealth_png(STEALTH_DATA))
    assert res.ok, res.error
    assert res.data.to_dict() == {
        "prompt": "hidden prompt",
        "steps": "30",
        "seed": "7",
        "sampler": "k_euler_ancestral",
    }


def test_stealth_payload_overrides_visible_text_fields(service_factory):
    res = service_factory().extract(stealth_png(STEALTH_DATA, text={"Description": "visible caption"}))
    assert res.data.prompt == "hidden prompt"
    assert res.data.steps == "30"


def test_injected_raster_decoder_is_used(service_factory):
    calls = []

    def decoder(buffer):
        calls.append(len(buffer))
        return Raster(64, 64, stealth_json_pixels(STEALTH_DATA))

    res = service_factory(raster_decoder=decoder).extract(raw_png())
    assert calls
    assert res.data.prompt == "hidden prompt"


def test_stealth_disabled(service_factory):
    res = service_factory(stealth_enabled=False).extract(stealth_png(STEALTH_DATA))
    assert not res.ok
    assert res.code == ErrorCode.NOT_FOUND.value


def test_heuristic_recovers_text_from_private_chunk(service_factory):
    res = service_factory().extract(_private_chunk_png())
    assert res.ok, res.error
    assert res.data.to_dict() == A1111_RECORD


def test_heuristic_disabled(service_factory):
    res = service_factory(heuristic_enabled=False).extract(_private_chunk_png())
    assert not res.ok
    assert res.error == "No SD metadata found in PNG"


def test_extraction_is_idempotent(service_factory):
    service = service_factory()
    data = stealth_png(STEALTH_DATA, text={"parameters": A1111_TEXT})
    first = service.extract(data)
    second = service.extract(data)
    assert first == second
    assert first.to_dict() == second.to_dict()


def test_jpeg_user_comment(service_factory):
    exif = piexif.dump(
        {
            "0th": {piexif.ImageIFD.Software: b"sdgen"},
            "Exif": {piexif.ExifIFD.UserComment: piexif.helper.UserComment.dump(A1111_TEXT, encoding="unicode")},
        }
    )
    res = service_factory().extract(jpeg_with_exif(exif))
    assert res.ok, res.error
    assert res.data.to_dict() == A1111_RECORD


def test_jpeg_com_segment(service_factory):
    res = service_factory(tag_reader=_empty_tags).extract(jpeg_with_segment(0xFE, A1111_TEXT.encode("utf-8")))
    assert res.ok, res.error
    assert res.data.to_dict() == A1111_RECORD


def test_webp_exif_chunk(service_factory):
    payload = b"II*\x00\x08\x00\x00\x00\x01\x00" + A1111_TEXT.encode("utf-16-le")
    res = service_factory().extract(riff_webp((b"VP8X", b"\x00" * 10), (b"EXIF", payload)))
    assert res.ok, res.error
    assert res.data.to_dict() == A1111_RECORD


def test_webp_tag_fields_come_first(service_factory):
    def reader(_buffer):
        tree = empty_tag_tree()
        tree["exif"]["UserComment"] = TagValue("tagged\nSteps: 12, Sampler: DDIM", None)
        return tree

    payload = b"II*\x00\x08\x00\x00\x00\x01\x00" + A1111_TEXT.encode("utf-16-le")
    res = service_factory(tag_reader=reader).extract(riff_webp((b"EXIF", payload)))
    assert res.data.steps == "12"
    assert res.data.prompt == "tagged"


def test_exif_fallback_when_nothing_structured(service_factory):
    def reader(_buffer):
        tree = empty_tag_tree()
        tree["exif"]["Make"] = TagValue("Canon", "Canon")
        return tree

    res = service_factory(tag_reader=reader).extract(riff_webp((b"ICCP", b"profile")))
    assert res.ok, res.error
    assert res.meta == {"source": "exif_fallback"}
    assert res.data.to_dict() == {"exif_fallback": {"Make": "Canon"}}


def test_failing_tier_is_skipped(service_factory):
    def reader(_buffer):
        raise RuntimeError("tag reader exploded")

    payload = b"II*\x00\x08\x00\x00\x00\x01\x00" + A1111_TEXT.encode("utf-16-le")
    res = service_factory(tag_reader=reader).extract(riff_webp((b"EXIF", payload)))
    assert res.ok, res.error
    assert res.data.parameters == A1111_TEXT


def test_unexpected_error_becomes_metadata_failed(service_factory, monkeypatch):
    def exploding_predicate(record):
        raise RuntimeError("boom\x00\nwith control chars")

    tiers = dict(service_module.TIERS)
    tiers["png"] = (Tier("broken", lambda ctx: None, exploding_predicate),)
    monkeypatch.setattr(service_module, "TIERS", tiers)

    res = service_factory().extract(raw_png())
    assert not res.ok
    assert res.code == ErrorCode.METADATA_FAILED.value
    assert res.error == "Metadata extraction failed: boom with control chars"


def test_input_errors(service_factory):
    service = service_factory()
    cases = [
        ("not bytes", ErrorCode.INVALID_INPUT, "Input must be bytes"),
        (b"", ErrorCode.INVALID_INPUT, "Empty buffer"),
        (b"GIF89a" + b"\x00" * 32, ErrorCode.UNSUPPORTED, "Unsupported image format"),
    ]
    for buffer, code, message in cases:
        res = service.extract(buffer)
        assert not res.ok
        assert res.code == code.value
        assert res.error == message


def test_not_found_names_the_format(service_factory):
    service = service_factory(tag_reader=_empty_tags)
    assert service.extract(raw_png()).error == "No SD metadata found in PNG"
    assert service.extract(jpeg_bytes()).error == "No SD metadata found in JPEG"
    assert service.extract(riff_webp((b"ICCP", b"x"))).error == "No SD metadata found in WebP"
    assert service.extract(raw_png()).code == ErrorCode.NOT_FOUND.value


def test_result_wire_shape(service_factory):
    service = service_factory()
    ok = service.extract(pillow_png({"parameters": A1111_TEXT})).to_dict()
    err = service.extract(b"").to_dict()
    assert ok == {"success": True, "data": A1111_RECORD}
    assert err == {"success": False, "error": "Empty buffer"}


def test_extract_metadata_resolves_collaborators_per_call(monkeypatch):
    assert extract_metadata(jpeg_bytes()).ok is False

    calls = []

    def reader(buffer):
        calls.append(len(buffer))
        tree = empty_tag_tree()
        tree["exif"]["UserComment"] = TagValue(A1111_TEXT)
        return tree

    monkeypatch.setattr(service_module, "read_tag_tree", reader)
    res = extract_metadata(jpeg_bytes())
    assert res.ok, res.error
    assert res.data.steps == "20"
    assert len(calls) == 1


def test_jpeg_entity_escaped_xmp_end_to_end():
    packet = (
        '<x:xmpmeta xmlns:x="adobe:ns:meta/">'
        '<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">'
        '<rdf:Description rdf:about="" xmlns:dc="http://purl.org/dc/elements/1.1/">'
        "<dc:description>a cat &amp; dog&#10;Negative prompt: ugly&#10;"
        "Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 1</dc:description>"
        "</rdf:Description></rdf:RDF></x:xmpmeta>"
    ).encode("utf-8")
    res = extract_metadata(jpeg_with_segment(0xE1, b"http://ns.adobe.com/xap/1.0/\x00" + packet))
    assert res.ok, res.error
    assert res.data.prompt == "a cat & dog"
    assert res.data.negative_prompt == "ugly"
    assert res.data.steps == "20"
    assert res.data.seed == "1"
