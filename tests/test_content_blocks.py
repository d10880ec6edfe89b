from __future__ import annotations

import pytest

from acpd.shared.models.content import (
    FileBlock,
    ImageBlock,
    TextBlock,
    UnknownBlock,
    get_message_text,
    parse_content,
    parse_content_block,
    render_block,
)


def test_text_block_falls_back_to_content_field() -> None:
    block = parse_content_block({"type": "text", "content": "legacy"})
    assert isinstance(block, TextBlock)
    assert block.text == "legacy"


def test_file_block_takes_filename_from_metadata() -> None:
    block = parse_content_block({
        "type": "file",
        "content": "body",
        "metadata": {"filename": "a.py", "language": "python"},
    })
    assert isinstance(block, FileBlock)
    assert block.filename == "a.py"
    assert block.metadata == {"language": "python"}
    assert block.to_dict() == {
        "type": "file",
        "content": "body",
        "metadata": {"language": "python", "filename": "a.py"},
    }


def test_image_block_is_rendered_as_reference_only() -> None:
    block = parse_content_block({
        "type": "image", "content": "iVBORw0KGgo=", "mimeType": "image/png",
    })
    assert isinstance(block, ImageBlock)
    assert block.data == "iVBORw0KGgo="
    assert render_block(block) == "[Image: image]\n\n"


def test_unknown_type_is_preserved_verbatim() -> None:
    raw = {"type": "audio", "content": "clip", "extra": 1}
    block = parse_content_block(raw)
    assert isinstance(block, UnknownBlock)
    assert block.to_dict() == raw
    assert render_block(block) == "clip\n\n"


def test_non_object_block_is_rejected() -> None:
    with pytest.raises(TypeError):
        parse_content(["just a string"])


def test_get_message_text_joins_text_blocks_only() -> None:
    blocks = parse_content([
        {"type": "text", "text": "one"},
        {"type": "diff", "content": "-x"},
        {"type": "text", "text": "two"},
    ])
    assert get_message_text(blocks) == "one\ntwo"
