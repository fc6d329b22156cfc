import json
from urllib.parse import quote

from sdmeta_backend.features.geninfo.novelai import (
    CommentKind,
    decode_comment,
    extract_director_references,
    is_novelai_format,
    parse_novelai_comment,
)
from sdmeta_backend.features.metadata.record import SDMetadata
from sdmeta_shared.types import ErrorCode

COMMENT = json.dumps({"uc": "bad hands", "steps": 28, "scale": 5, "seed": 99, "sampler": "k_euler"})


def test_comment_with_description():
    res = parse_novelai_comment(COMMENT, "a cat")
    assert res.ok, res.error
    assert res.data.to_dict() == {
        "prompt": "a cat",
        "negative_prompt": "bad hands",
        "steps": "28",
        "cfg_scale": "5",
        "seed": "99",
        "sampler": "k_euler",
    }


def test_json_prompt_used_when_no_description():
    comment = json.dumps({"prompt": "from json", "steps": 20})
    res = parse_novelai_comment(comment)
    assert res.data.prompt == "from json"


def test_existing_prompt_and_negative_are_kept():
    record = SDMetadata(prompt="earlier", negative_prompt="earlier neg", steps="1")
    parse_novelai_comment(COMMENT, "a cat", record)
    assert record.prompt == "earlier"
    assert record.negative_prompt == "earlier neg"
    assert record.steps == "28"


def test_float_scale_renders_without_trailing_zero():
    res = parse_novelai_comment(json.dumps({"scale": 5.0, "steps": 28.0}))
    assert res.data.cfg_scale == "5"
    assert res.data.steps == "28"
    res = parse_novelai_comment(json.dumps({"scale": 5.5}))
    assert res.data.cfg_scale == "5.5"


def test_vibe_flag_only_for_booleans():
    assert parse_novelai_comment(json.dumps({"uncond_per_vibe": False})).data.nai_vibe is False
    assert parse_novelai_comment(json.dumps({"uncond_per_vibe": "yes", "steps": 1})).data.nai_vibe is None


def test_v4_captions():
    comment = {
        "v4_prompt": {
            "caption": {
                "base_caption": "scenery",
                "char_captions": [{"char_caption": "girl"}, {"char_caption": ""}, {"char_caption": "boy"}],
            }
        },
        "v4_negative_prompt": {"caption": {"base_caption": "ugly", "char_captions": [{"char_caption": "extra"}]}},
    }
    res = parse_novelai_comment(json.dumps(comment))
    assert res.data.nai_base_prompt == "scenery"
    assert res.data.nai_char_prompts == ["girl", "boy"]
    assert res.data.nai_neg_base_prompt == "ugly"
    assert res.data.nai_neg_char_prompts == ["extra"]


def test_director_references_zip_by_index():
    data = {
        "director_reference_descriptions": ["style", {"caption": {"base_caption": "character"}}],
        "director_reference_strengths": [0.6, 1.0],
        "director_reference_secondary_strengths": [0.2],
    }
    assert extract_director_references(data) == ["style 0.6/0.2", "character 1"]
    assert extract_director_references({}) == []


def test_url_encoded_comment():
    res = parse_novelai_comment(quote(COMMENT), "a cat")
    assert res.ok
    assert res.data.seed == "99"


def test_a1111_text_in_comment_falls_back():
    text = "a dog\nSteps: 20, Sampler: Euler"
    res = parse_novelai_comment(text)
    assert res.ok
    assert res.data.parameters == text
    assert res.data.prompt == "a dog"
    assert res.data.sampler == "Euler"


def test_garbage_comment_is_parse_error():
    res = parse_novelai_comment("not json at all")
    assert not res.ok
    assert res.code == ErrorCode.PARSE_ERROR
    assert res.error == "Invalid JSON format"


def test_decode_comment_kinds():
    assert decode_comment({"a": 1}).kind is CommentKind.JSON
    assert decode_comment("[1, 2]").kind is CommentKind.UNKNOWN
    assert decode_comment("Steps: 3").kind is CommentKind.A1111_TEXT
    assert decode_comment(42).kind is CommentKind.UNKNOWN


def test_is_novelai_format():
    assert is_novelai_format(COMMENT)
    assert is_novelai_format(json.dumps({"v4_prompt": {}}))
    assert not is_novelai_format(json.dumps({"foo": "bar"}))
    assert not is_novelai_format("Steps: 20")
