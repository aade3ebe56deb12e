from altwatch.models import AssetMetadata, ContentRecord, FieldNode, RecordField
from altwatch.repository import InMemoryAssetRepository
from altwatch.scan.attachments import AttachmentEvaluator
from altwatch.scan.fields import Container, FieldWalker

from conftest import image_asset


def _walker(rules, assets=None):
    repo = InMemoryAssetRepository(
        assets
        if assets is not None
        else {
            10: image_asset("Lighthouse at dusk", "lighthouse.jpg"),
            11: image_asset("", "IMG_0042.jpg"),
            12: image_asset("photo", "team.jpg"),
            13: image_asset("Harbour map", "map.png"),
            20: AssetMetadata(alt_text="", filename="brochure.pdf", mime_type="application/pdf", title="Brochure"),
        }
    )
    return FieldWalker(AttachmentEvaluator(repo, rules))


def test_group_repeater_image_paths(rules):
    node = FieldNode(
        name="hero",
        kind="group",
        sub_fields=(
            FieldNode(
                name="slides",
                kind="repeater",
                sub_fields=(FieldNode(name="image", kind="image"),),
            ),
        ),
    )
    value = {"slides": [{"image": 10}, {"image": 11}]}

    rows = _walker(rules).walk(node, value, "hero")

    assert [row.field_path for row in rows] == ["hero.slides[0].image", "hero.slides[1].image"]
    assert [row.source for row in rows] == ["content_image", "content_image"]
    assert [row.attachment_id for row in rows] == [10, 11]
    assert rows[1].issues == ["missing_alt"]


def test_image_value_normalization(rules):
    walker = _walker(rules)
    assert walker.resolve_image_id(10) == 10
    assert walker.resolve_image_id("12") == 12
    assert walker.resolve_image_id({"ID": 13}) == 13
    assert walker.resolve_image_id({"id": "11"}) == 11
    assert walker.resolve_image_id("https://cdn.example.com/uploads/map.png?ver=3") == 13
    assert walker.resolve_image_id("https://cdn.example.com/uploads/unknown.png") == 0
    assert walker.resolve_image_id(None) == 0
    assert walker.resolve_image_id(True) == 0


def test_image_requires_image_mime(rules):
    walker = _walker(rules)
    assert walker.walk(FieldNode(name="file", kind="image"), 20, "file") == []
    assert walker.walk(FieldNode(name="file", kind="image"), 999, "file") == []


def test_gallery_rows_are_indexed(rules):
    rows = _walker(rules).walk(
        FieldNode(name="gallery", kind="gallery"),
        [10, "bogus", {"ID": 12}, "https://cdn.example.com/uploads/map.png"],
        "gallery",
    )
    assert [row.field_path for row in rows] == ["gallery[0]", "gallery[2]", "gallery[3]"]
    assert {row.source for row in rows} == {"content_gallery"}
    assert rows[1].issues == ["alt_generic"]


def test_variant_blocks_skip_unknown_tags(rules):
    node = FieldNode(
        name="blocks",
        kind="variant_block_list",
        variants={
            "hero": (FieldNode(name="image", kind="image"),),
            "gallery": (FieldNode(name="images", kind="gallery"),),
        },
    )
    value = [
        {"layout": "hero", "image": 10},
        {"acf_fc_layout": "gallery", "images": [11, 12]},
        {"layout": "retired_block", "image": 13},
        "not a block",
    ]

    rows = _walker(rules).walk(node, value, "blocks")

    assert [row.field_path for row in rows] == [
        "blocks[0].hero.image",
        "blocks[1].gallery.images[0]",
        "blocks[1].gallery.images[1]",
    ]


def test_variant_block_with_layout_sub_field_uses_block_tag(rules):
    node = FieldNode(
        name="blocks",
        kind="variant_block_list",
        variants={
            "hero": (
                FieldNode(name="layout", kind="text"),
                FieldNode(name="image", kind="image"),
            ),
        },
    )
    value = [{"acf_fc_layout": "hero", "layout": "two-column", "image": 10}]

    rows = _walker(rules).walk(node, value, "blocks")

    assert [row.field_path for row in rows] == ["blocks[0].hero.image"]


def test_repeater_skips_non_mapping_rows(rules):
    node = FieldNode(
        name="cards",
        kind="repeater",
        sub_fields=(FieldNode(name="image", kind="image"),),
    )
    rows = _walker(rules).walk(node, [None, {"image": 10}, 42], "cards")
    assert [row.field_path for row in rows] == ["cards[1].image"]


def test_unknown_kind_and_mistyped_values_emit_nothing(rules):
    walker = _walker(rules)
    assert walker.walk(FieldNode(name="title", kind="text"), "Hello", "title") == []
    assert walker.walk(FieldNode(name="meta", kind="group"), "oops", "meta") == []
    assert walker.walk(FieldNode(name="slides", kind="repeater"), {"a": 1}, "slides") == []
    assert walker.walk(FieldNode(name="gallery", kind="gallery"), None, "gallery") == []


def test_walk_record_concatenates_fields_in_order(rules):
    record = ContentRecord(
        id=5,
        title="About us",
        content_type="page",
        modified_at="2025-01-01T00:00:00+00:00",
        fields=[
            RecordField(FieldNode(name="cover", kind="image"), 13),
            RecordField(FieldNode(name="body", kind="inline_markup"), '<p><img src="/a.png" alt="Our office"></p>'),
            RecordField(FieldNode(name="logo", kind="image"), 12),
        ],
    )
    rows = _walker(rules).walk_record(record)
    assert [row.field_path for row in rows] == ["cover", "body", "logo"]
    assert {row.container_id for row in rows} == {5}
    assert {row.container_title for row in rows} == {"About us"}


def test_container_defaults(rules):
    rows = _walker(rules).walk(FieldNode(name="cover", kind="image"), 10, "cover")
    assert rows[0].container_id == Container().id == 0
    assert rows[0].title == "lighthouse"
    assert rows[0].file_name == "lighthouse.jpg"
