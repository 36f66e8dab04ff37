from app.utils.text import format_duration, parse_duration, render_template, user_mention


class TestParseDuration:
    def test_numbers_are_seconds(self):
        assert parse_duration(90) == 90
        assert parse_duration("90") == 90

    def test_unit_suffixes(self):
        assert parse_duration("10m") == 600
        assert parse_duration("2h") == 7200
        assert parse_duration("1d") == 86400
        assert parse_duration("1W") == 604800

    def test_invalid_values_use_default(self):
        assert parse_duration("soon", 30) == 30
        assert parse_duration(None, 5) == 5
        assert parse_duration(True, 7) == 7
        assert parse_duration(["10m"], 3) == 3

    def test_negative_number_is_clamped(self):
        assert parse_duration(-5) == 0


def test_format_duration_keeps_two_largest_units():
    assert format_duration(0) == "0 сек"
    assert format_duration(300) == "5 мин"
    assert format_duration(90061) == "1 д 1 ч"


def test_user_mention_escapes_name():
    assert user_mention(1, "<b>") == '<a href="tg://user?id=1">&lt;b&gt;</a>'
    assert "Участник" in user_mention(1, None)


def test_render_template_leaves_unknown_placeholders():
    result = render_template("{a} и {b}", {"a": "1"})
    assert result == "1 и {b}"
