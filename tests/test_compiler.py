import asyncio

import pytest
from PIL import Image

from cardstudio.domain.compiler import (
    compile_design,
    compile_scene,
    find_photo_slot,
    fit_photo,
    restore_preview,
    substitute_text,
)
from cardstudio.domain.scene import CircleNode, ImageNode, RectNode, TextNode, deserialize, serialize

SUBJECT = {"name": "Ada Lovelace", "class": "12B", "roll_number": "R-7", "photo": "photo://ada"}


def test_explicit_key_replaces_whole_text():
    node = deserialize({"objects": [{"type": "text", "text": "Name: {{other}}", "key": "name"}]}).objects[0]
    assert substitute_text(node, SUBJECT) == "Ada Lovelace"


def test_inline_placeholders_are_replaced_in_place():
    node = TextNode(text="{{ name }} / {{class}} / {{missing}}")
    assert substitute_text(node, SUBJECT) == "Ada Lovelace / 12B / Sample missing"


def test_none_value_becomes_sample_text():
    node = TextNode(text="{{name}}")
    assert substitute_text(node, {"name": None}) == "Sample name"


def test_unbound_text_is_left_alone():
    assert substitute_text(TextNode(text="Student ID"), SUBJECT) is None


def test_fit_photo_cover_rect():
    slot = RectNode(left=10, top=20, width=200, height=100)
    fit = fit_photo(slot, 400, 400)
    assert fit.scale == pytest.approx(0.5)
    assert (fit.center_x, fit.center_y) == pytest.approx((110, 70))
    assert isinstance(fit.clip, RectNode)
    assert (fit.clip.width, fit.clip.height) == pytest.approx((400, 200))
    assert fit.clip.origin_x == "center" and fit.clip.origin_y == "center"


@pytest.mark.parametrize("photo_side,scale,radius", [(150, 1.0, 75), (300, 0.5, 150)])
def test_fit_photo_circular(photo_side, scale, radius):
    slot = CircleNode(left=0, top=0, radius=75)
    fit = fit_photo(slot, photo_side, photo_side, circular=True)
    assert fit.scale == pytest.approx(scale)
    assert isinstance(fit.clip, CircleNode)
    assert fit.clip.radius == pytest.approx(radius)
    assert (fit.center_x, fit.center_y) == pytest.approx((75, 75))


def test_fit_photo_uses_slot_scale_and_origin():
    slot = RectNode(left=100, top=100, width=50, height=50, scale_x=2, scale_y=3,
                    origin_x="center", origin_y="center")
    fit = fit_photo(slot, 100, 100)
    # slot is 100 x 150 on the canvas
    assert fit.scale == pytest.approx(1.5)
    assert (fit.center_x, fit.center_y) == pytest.approx((100, 100))
    assert (fit.clip.width, fit.clip.height) == pytest.approx((100 / 1.5, 100))


def test_fit_photo_rejects_empty_sizes():
    with pytest.raises(ValueError):
        fit_photo(RectNode(width=10, height=10), 0, 10)
    with pytest.raises(ValueError):
        fit_photo(RectNode(width=0, height=10), 10, 10)


def test_first_top_level_slot_wins(card_design):
    card_design["objects"].append({"type": "rect", "isPhotoPlaceholder": True, "width": 5, "height": 5})
    index, slot = find_photo_slot(deserialize(card_design).objects)
    assert index == 4
    assert slot.width == 100


def test_offline_compile(card_design, make_assets, png_bytes):
    scene = deserialize(card_design)
    before = serialize(scene)
    assets = make_assets({"photo://ada": png_bytes(300, 300)})

    compiled = asyncio.run(compile_scene(scene, SUBJECT, assets))

    assert serialize(scene) == before
    texts = [n.text for n in compiled.objects if isinstance(n, TextNode)]
    assert texts == ["Ada Lovelace", "Class: 12B", "R-7"]
    assert not any(n.is_photo_slot for n in compiled.objects)
    photo = compiled.objects[-1]
    assert isinstance(photo, ImageNode)
    assert photo.src == "photo://ada"
    assert (photo.width, photo.height) == (300, 300)
    assert photo.origin_x == "center" and photo.origin_y == "center"
    assert photo.scale_x == photo.scale_y == pytest.approx(0.4)  # 120 / 300
    assert (photo.left, photo.top) == pytest.approx((60, 120))
    assert not photo.selectable and not photo.evented
    assert not photo.synthesized


def test_interactive_compile_then_restore_is_identity(card_design, make_assets, png_bytes):
    scene = deserialize(card_design)
    assets = make_assets({"photo://ada": png_bytes(80, 160)})

    compiled = asyncio.run(compile_scene(scene, SUBJECT, assets, interactive=True))

    name = compiled.objects[1]
    assert name.text == "Ada Lovelace" and name.editable is False
    slot = compiled.objects[4]
    assert slot.is_photo_slot and slot.visible is False and slot.evented is False
    assert compiled.objects[-1].synthesized
    assert len(compiled.objects) == len(scene.objects) + 1

    assert serialize(restore_preview(compiled)) == serialize(scene)


def test_photo_failure_restores_slot_and_notifies(card_design, make_assets):
    scene = deserialize(card_design)
    messages = []

    compiled = asyncio.run(compile_scene(scene, SUBJECT, make_assets(), interactive=True,
                                         on_photo_error=messages.append))

    assert len(compiled.objects) == len(scene.objects)
    slot = compiled.objects[4]
    assert slot.visible is True and slot.evented is True
    assert len(messages) == 1 and messages[0].startswith("Could not load photo")
    assert serialize(restore_preview(compiled)) == serialize(scene)


def test_missing_photo_source_leaves_slot(card_design, make_assets):
    subject = {k: v for k, v in SUBJECT.items() if k != "photo"}
    assets = make_assets()
    compiled = asyncio.run(compile_scene(deserialize(card_design), subject, assets))
    assert compiled.objects[4].is_photo_slot and compiled.objects[4].visible
    assert assets.loader.calls == []


def test_only_one_photo_is_placed(card_design, make_assets, png_bytes):
    card_design["objects"].append({"type": "rect", "left": 300, "top": 60, "width": 50, "height": 50,
                                   "isPhotoPlaceholder": True})
    assets = make_assets({"photo://ada": png_bytes(100, 100)})
    compiled = asyncio.run(compile_scene(deserialize(card_design), SUBJECT, assets))
    assert sum(isinstance(n, ImageNode) for n in compiled.objects) == 1
    remaining = [n for n in compiled.objects if n.is_photo_slot]
    assert len(remaining) == 1 and remaining[0].left == 300 and remaining[0].visible


def test_text_in_groups_is_compiled():
    design = {"objects": [{"type": "group", "objects": [{"type": "text", "text": "{{name}}"}]}]}
    compiled = asyncio.run(compile_design(design, SUBJECT))
    assert compiled["objects"][0]["objects"][0]["text"] == "Ada Lovelace"


def test_compile_design_returns_malformed_input_unchanged():
    design = {"objects": [{"type": "star", "text": "{{name}}"}]}
    assert asyncio.run(compile_design(design, SUBJECT)) is design
    assert asyncio.run(compile_design("{oops", SUBJECT)) == "{oops"


def test_fit_photo_rect_slot_wider_than_photo():
    fit = fit_photo(RectNode(width=200, height=100), 100, 100)
    assert fit.scale == pytest.approx(2.0)
    assert (fit.clip.width, fit.clip.height) == pytest.approx((100, 50))


def test_loader_errors_restore_slot_and_notify(card_design):
    class BrokenAssets:
        async def open(self, src):
            raise RuntimeError("decoder crashed")

    scene = deserialize(card_design)
    messages = []
    compiled = asyncio.run(compile_scene(scene, SUBJECT, BrokenAssets(), interactive=True,
                                         on_photo_error=messages.append))
    slot = compiled.objects[4]
    assert slot.visible is True and slot.evented is True
    assert len(compiled.objects) == len(scene.objects)
    assert len(messages) == 1


def test_oversized_photo_keeps_the_placeholder(card_design, make_assets, png_bytes, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    assets = make_assets({"photo://ada": png_bytes(100, 100)})
    compiled = asyncio.run(compile_scene(deserialize(card_design), SUBJECT, assets))
    assert compiled.objects[4].is_photo_slot and compiled.objects[4].visible
    assert not any(isinstance(n, ImageNode) for n in compiled.objects)
