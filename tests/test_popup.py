"""Tests for Popup class."""

import pytest
from term_harness import (
    BORDER_ASCII,
    Buffer,
    Cell,
    Popup,
    Rect,
    Style,
    display_width,
    wrap_cells,
)


def filled_buffer(width=20, height=8, fill='.'):
    """Create a buffer pre-filled with ``fill`` so untouched cells are visible."""
    buf = Buffer(Rect(0, 0, width, height))
    for y in range(height):
        buf.set_string(0, y, fill * width)
    return buf


class TestPopupOptions:
    """Tests for Popup configuration."""

    def test_defaults(self):
        """Test that every option defaults to empty or default values."""
        popup = Popup()
        assert popup.title == ''
        assert popup.content == ''
        assert popup.border_style == Style()
        assert popup.title_style == Style()
        assert popup.style == Style()

    def test_with_options(self):
        """Test that with_options returns an updated copy."""
        popup = Popup(title="Old")
        updated = popup.with_options(title="New", border_style=Style(fg='yellow'))

        assert updated.title == "New"
        assert updated.border_style == Style(fg='yellow')
        assert popup.title == "Old"

    def test_options_are_independent(self):
        """Test that setting one option leaves the others alone."""
        popup = Popup().with_options(title_style=Style(attrs={'bold'}))
        assert popup.title_style == Style(attrs={'bold'})
        assert popup.border_style == Style()
        assert popup.style == Style()

    def test_unknown_option(self):
        """Test that unknown option names are rejected."""
        with pytest.raises(TypeError):
            Popup().with_options(colour='red')

    def test_immutable(self):
        """Test that popups can't be mutated after construction."""
        popup = Popup(title="Fixed")
        with pytest.raises(AttributeError):
            popup.title = "Changed"


class TestPopupRender:
    """Tests for Popup.render()."""

    def test_border_and_title(self):
        """Test the border layout with the title in the top border."""
        buf = Buffer(Rect(0, 0, 10, 4))
        Popup(title="Hi", content="body").render(buf.area, buf)

        assert buf.lines() == [
            '┌Hi──────┐',
            '│body    │',
            '│        │',
            '└────────┘',
        ]

    def test_ascii_borders(self):
        """Test the ASCII border set."""
        buf = Buffer(Rect(0, 0, 6, 3))
        Popup(borders=BORDER_ASCII).render(buf.area, buf)

        assert buf.lines() == [
            '+----+',
            '|    |',
            '+----+',
        ]

    def test_does_not_clear_interior(self):
        """Test that cells not covered by text keep their content."""
        buf = filled_buffer(10, 4)
        Popup(content="ab").render(buf.area, buf)

        assert buf.lines() == [
            '┌────────┐',
            '│ab......│',
            '│........│',
            '└────────┘',
        ]

    def test_renders_only_inside_area(self):
        """Test that cells outside the area are untouched."""
        buf = filled_buffer(12, 6)
        Popup(title="T", content="x").render(Rect(2, 1, 6, 3), buf)

        assert buf.lines() == [
            '............',
            '..┌T───┐....',
            '..│x...│....',
            '..└────┘....',
            '............',
            '............',
        ]

    def test_word_wrapping_trims_whitespace(self):
        """Test that wrapped lines have no leading or trailing spaces."""
        buf = Buffer(Rect(0, 0, 9, 5))
        Popup(content="  one two   three  ").render(buf.area, buf)

        assert buf.lines()[1:4] == [
            '│one two│',
            '│three  │',
            '│       │',
        ]

    def test_long_words_are_broken(self):
        """Test that words longer than the interior are split."""
        buf = Buffer(Rect(0, 0, 6, 4))
        Popup(content="abcdefg").render(buf.area, buf)

        assert buf.lines()[1:3] == ['│abcd│', '│efg │']

    def test_list_content(self):
        """Test that list content is rendered one item per line."""
        buf = Buffer(Rect(0, 0, 8, 5))
        Popup(content=["first", "", "third"]).render(buf.area, buf)

        assert buf.lines()[1:4] == ['│first │', '│      │', '│third │']

    def test_text_clipped_to_interior(self):
        """Test that overflowing text never reaches the border cells."""
        buf = Buffer(Rect(0, 0, 7, 4))
        text = "\n".join(f"line {i}" for i in range(10))
        Popup(content=text).render(buf.area, buf)

        assert buf.lines() == [
            '┌─────┐',
            '│line │',
            '│0    │',
            '└─────┘',
        ]

    def test_title_clipped_to_border(self):
        """Test that a long title stops before the top-right corner."""
        buf = Buffer(Rect(0, 0, 6, 3))
        Popup(title="A very long title").render(buf.area, buf)

        assert buf.lines()[0] == '┌A ve┐'

    def test_zero_width_area(self):
        """Test that a zero-width area writes nothing."""
        buf = filled_buffer(10, 4)
        before = [Cell(c.symbol, c.style) for c in buf.content]

        Popup(title="T", content="text", style=Style(fg='red')).render(Rect(3, 1, 0, 2), buf)

        assert buf.content == before

    def test_zero_height_area(self):
        """Test that a zero-height area writes nothing."""
        buf = filled_buffer(10, 4)
        before = [Cell(c.symbol, c.style) for c in buf.content]

        Popup(title="T", content="text", style=Style(fg='red')).render(Rect(3, 1, 5, 0), buf)

        assert buf.content == before

    def test_area_outside_buffer(self):
        """Test that an area beyond the buffer is clipped away."""
        buf = filled_buffer(10, 4)
        before = [Cell(c.symbol, c.style) for c in buf.content]

        Popup(content="text").render(Rect(20, 20, 5, 5), buf)

        assert buf.content == before

    def test_area_partially_outside_buffer(self):
        """Test that an area overlapping the buffer edge is clipped to it."""
        buf = filled_buffer(6, 3)
        Popup(content="x").render(Rect(3, 0, 10, 10), buf)

        assert buf.lines() == [
            '...┌─┐',
            '...│x│',
            '...└─┘',
        ]

    @pytest.mark.parametrize("width,height", [(1, 1), (2, 2), (1, 5), (5, 1)])
    def test_tiny_areas(self, width, height):
        """Test that tiny areas render without errors and stay in bounds."""
        buf = filled_buffer(8, 8)
        Popup(title="Title", content="Body").render(Rect(1, 1, width, height), buf)

        for y in range(8):
            for x in range(8):
                if not Rect(1, 1, width, height).contains(x, y):
                    assert buf[x, y].symbol == '.'

    def test_styles(self):
        """Test the styles applied to border, title and body."""
        buf = Buffer(Rect(0, 0, 8, 3))
        Popup(
            title="T",
            content="b",
            border_style=Style(fg='yellow'),
            title_style=Style(attrs={'bold'}),
            style=Style(bg='blue'),
        ).render(buf.area, buf)

        assert buf[0, 0].style == Style(fg='yellow', bg='blue')
        assert buf[1, 0].style == Style(fg='yellow', bg='blue', attrs={'bold'})
        assert buf[1, 1].style == Style(bg='blue')
        assert buf[5, 1].style == Style(bg='blue')

    def test_wide_characters_wrap_by_cells(self):
        """Test that double-width text wraps at the interior width in cells."""
        buf = Buffer(Rect(0, 0, 8, 5))
        Popup(content="日本語の文章").render(buf.area, buf)

        assert buf.lines()[1:4] == ['│日本語│', '│の文章│', '│      │']

    def test_mixed_width_words(self):
        """Test wrapping words that mix narrow and wide characters."""
        buf = Buffer(Rect(0, 0, 8, 4))
        Popup(content="ab 日本語").render(buf.area, buf)

        assert buf.lines()[1:3] == ['│ab    │', '│日本語│']


class TestWrapCells:
    """Tests for wrap_cells() and display_width()."""

    def test_display_width(self):
        """Test that wide characters count as two cells."""
        assert display_width("abc") == 3
        assert display_width("日本") == 4
        assert display_width("") == 0

    def test_words_fill_lines(self):
        """Test greedy filling of words."""
        assert wrap_cells("one two three", 7) == ["one two", "three"]

    def test_internal_spacing_kept(self):
        """Test that spaces between words on the same line are kept."""
        assert wrap_cells("a  b", 10) == ["a  b"]

    def test_long_word_split(self):
        """Test that a word wider than the line is split by cells."""
        assert wrap_cells("日本語の文章", 4) == ["日本", "語の", "文章"]

    def test_wide_character_wider_than_line(self):
        """Test that a character that can never fit still gets its own line."""
        assert wrap_cells("日本", 1) == ["日", "本"]

    def test_blank(self):
        """Test that blank text wraps to nothing."""
        assert wrap_cells("   ", 5) == []
