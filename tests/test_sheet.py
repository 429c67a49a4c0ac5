import pytest

from cardstudio.domain.sheet import STANDARD_LAYOUT, Box, RenderedCard, SheetLayout, compose_sheets, contain_fit


def cards(count, width=1011, height=638):
    return [RenderedCard(image=None, width=width, height=height, label=str(i)) for i in range(count)]


def test_standard_layout_is_centred_a4_grid():
    layout = STANDARD_LAYOUT
    assert layout.per_page == 10
    first = layout.slot_box(0)
    assert (first.x, first.y) == pytest.approx((16.9, 9.5))
    assert (first.width, first.height) == (85.6, 54.0)
    last = layout.slot_box(9)
    assert last.x + last.width == pytest.approx(210 - 16.9)
    assert last.y + last.height == pytest.approx(297 - 9.5)


def test_pages_fill_row_major_and_last_page_is_partial():
    pages = compose_sheets(cards(23))
    assert [len(p.filled) for p in pages] == [10, 10, 3]
    assert [p.number for p in pages] == [1, 2, 3]
    assert len(pages[-1].empty) == 7
    assert [s.placement.card.label for s in pages[1].filled] == [str(i) for i in range(10, 20)]

    slots = pages[0].slots
    assert slots[1].guide.x > slots[0].guide.x and slots[1].guide.y == slots[0].guide.y
    assert slots[2].guide.y > slots[0].guide.y and slots[2].guide.x == slots[0].guide.x


def test_no_cards_no_pages():
    assert compose_sheets([]) == []


def test_contain_fit_centres_on_both_axes():
    slot = Box(10, 20, 100, 50)
    wide = contain_fit(400, 100, slot)
    assert (wide.width, wide.height) == pytest.approx((100, 25))
    assert (wide.x, wide.y) == pytest.approx((10, 32.5))
    tall = contain_fit(100, 100, slot)
    assert (tall.width, tall.height) == pytest.approx((50, 50))
    assert (tall.x, tall.y) == pytest.approx((35, 20))


def test_cards_keep_aspect_ratio_inside_their_guide():
    slot = compose_sheets(cards(1))[0].slots[0]
    draw, guide = slot.placement.draw, slot.guide
    assert draw.width / draw.height == pytest.approx(1011 / 638)
    assert draw.width <= guide.width + 1e-9 and draw.height <= guide.height + 1e-9
    assert draw.x - guide.x == pytest.approx(guide.x + guide.width - (draw.x + draw.width))
    assert draw.y - guide.y == pytest.approx(guide.y + guide.height - (draw.y + draw.height))


def test_rotate_to_fit_turns_portrait_cards():
    portrait = cards(1, width=638, height=1011)
    plain = compose_sheets(portrait)[0].slots[0].placement
    assert not plain.rotated
    assert plain.draw.height == pytest.approx(54)

    layout = SheetLayout(rotate_to_fit=True)
    turned = compose_sheets(portrait, layout)[0].slots[0].placement
    assert turned.rotated
    assert turned.draw.width > turned.draw.height
    assert turned.draw.width / turned.draw.height == pytest.approx(1011 / 638)

    landscape = compose_sheets(cards(1), layout)[0].slots[0].placement
    assert not landscape.rotated


def test_invalid_layouts_are_rejected():
    with pytest.raises(ValueError):
        SheetLayout(cols=0)
    with pytest.raises(ValueError):
        SheetLayout(slot_width=-1)


def test_custom_margins_override_centring():
    layout = SheetLayout(cols=1, rows=1, margin_x=5, margin_y=7)
    assert layout.slot_box(0) == Box(5, 7, 85.6, 54.0)


def test_twelve_cards_make_two_pages():
    pages = compose_sheets(cards(12))
    assert len(pages) == 2
    assert len(pages[1].filled) == 2 and len(pages[1].empty) == 8


def test_tall_card_is_centred_horizontally_with_full_guide():
    layout = SheetLayout(slot_width=80, slot_height=50, cols=1, rows=1, margin_x=0, margin_y=0)
    slot = compose_sheets(cards(1, width=200, height=300), layout)[0].slots[0]
    draw = slot.placement.draw
    assert draw.height == pytest.approx(50)
    assert draw.width == pytest.approx(50 * 2 / 3)
    assert draw.y == pytest.approx(0)
    assert draw.x == pytest.approx((80 - draw.width) / 2)
    assert slot.guide == Box(0, 0, 80, 50)
