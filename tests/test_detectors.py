"""Unit тесты детекторов: запрещённые слова, флуд, повторы, реклама, автоудаление."""
import pytest

from app.moderation.ads import AdDetector
from app.moderation.auto_delete import AutoDeleteRuleMatcher
from app.moderation.content_filter import SensitiveWordDetector
from app.moderation.models import PunishmentKind
from app.moderation.policy import ModerationPolicy, PolicyError
from app.moderation.spam import DuplicateDetector, FloodDetector, normalize_body

from conftest import CHAT_ID


def _policy(**sections):
    return ModerationPolicy.from_dict(CHAT_ID, sections)


class TestSensitiveWordDetector:
    def test_word_is_case_insensitive_substring(self, make_message):
        policy = _policy(sensitiveWords={"enabled": True, "words": ["Казино"], "action": "warn"})

        verdict = SensitiveWordDetector().evaluate(make_message("Лучшее КАЗИНОоо тут"), policy)

        assert verdict.matched
        assert verdict.reason == "sensitive_word:казино"
        assert verdict.confidence == 1.0
        assert verdict.suggested_action == PunishmentKind.WARN

    def test_pattern_match_reports_source(self, make_message):
        policy = _policy(sensitiveWords={"enabled": True, "patterns": [r"bit\.ly/\w+"]})

        verdict = SensitiveWordDetector().evaluate(make_message("жми BIT.LY/abc"), policy)

        assert verdict.matched
        assert verdict.reason == r"sensitive_pattern:bit\.ly/\w+"

    def test_clean_text_does_not_match(self, make_message):
        policy = _policy(sensitiveWords={"enabled": True, "words": ["спам"]})

        assert not SensitiveWordDetector().evaluate(make_message("всем привет"), policy).matched

    def test_broken_pattern_raises_policy_error(self, make_message):
        policy = _policy(sensitiveWords={"enabled": True, "words": ["спам"], "patterns": ["(["]})

        with pytest.raises(PolicyError):
            SensitiveWordDetector().evaluate(make_message("спам"), policy)


class TestFloodDetector:
    def test_fires_when_window_reaches_limit(self, windows, clock, make_message):
        policy = _policy(antiSpam={"enabled": True, "maxMessages": 3, "windowSeconds": 10})
        detector = FloodDetector(windows, clock=clock)

        verdicts = []
        for _ in range(3):
            verdicts.append(detector.evaluate(make_message(), policy))
            clock.advance(1)

        assert [v.matched for v in verdicts] == [False, False, True]
        assert verdicts[-1].reason == "flood:3/10s"
        assert verdicts[-1].confidence == 1.0

    def test_old_messages_leave_the_window(self, windows, clock, make_message):
        policy = _policy(antiSpam={"enabled": True, "maxMessages": 3, "windowSeconds": 10})
        detector = FloodDetector(windows, clock=clock)

        detector.evaluate(make_message(), policy)
        detector.evaluate(make_message(), policy)
        clock.advance(30)

        assert not detector.evaluate(make_message(), policy).matched

    def test_users_are_counted_separately(self, windows, clock, make_message):
        policy = _policy(antiSpam={"enabled": True, "maxMessages": 2, "windowSeconds": 10})
        detector = FloodDetector(windows, clock=clock)

        detector.evaluate(make_message(user_id=1), policy)

        assert not detector.evaluate(make_message(user_id=2), policy).matched


class TestDuplicateDetector:
    def test_fires_above_threshold(self, windows, make_message):
        policy = _policy(antiSpam={"enabled": True, "duplicateThreshold": 3, "windowSeconds": 60})
        detector = DuplicateDetector(windows)

        results = [
            detector.evaluate(make_message(text), policy).matched
            for text in ("Купи  слона", "купи слона", "КУПИ СЛОНА ", "купи слона")
        ]

        assert results == [False, False, False, True]

    def test_empty_text_never_duplicates(self, windows, make_message):
        policy = _policy(antiSpam={"enabled": True, "duplicateThreshold": 1})
        detector = DuplicateDetector(windows)

        for _ in range(3):
            assert not detector.evaluate(make_message(""), policy).matched

    def test_disabled_with_zero_threshold(self):
        policy = _policy(antiSpam={"enabled": True, "duplicateThreshold": 0})

        assert not DuplicateDetector(None).is_enabled(policy)

    def test_normalize_body(self):
        assert normalize_body("  Hello\n\tWORLD ") == "hello world"


class TestAdDetector:
    def test_keyword_scenario(self, make_message):
        policy = _policy(
            sensitiveWords={"enabled": False},
            antiAds={"enabled": True, "keywords": ["加群"], "action": "delete"},
        )

        verdict = AdDetector().evaluate(make_message("加群点我"), policy)

        assert verdict.matched
        assert verdict.reason == "keyword_ad:加群"
        assert verdict.confidence == 0.8
        assert verdict.suggested_action == PunishmentKind.DELETE

    def test_sticker_set_with_at_sign(self, make_message):
        policy = _policy(antiAds={"enabled": True})

        verdict = AdDetector().evaluate(
            make_message("", is_sticker=True, sticker_set_name="promo_by_@shop"),
            policy,
        )

        assert verdict.reason.startswith("sticker_ad")
        assert verdict.confidence == 0.9

    @pytest.mark.parametrize("text", [
        "заходи https://t.me/+AbCdEf123",
        "https://telegram.me/joinchat/XYZ",
    ])
    def test_invite_links(self, make_message, text):
        policy = _policy(antiAds={"enabled": True})

        verdict = AdDetector().evaluate(make_message(text), policy)

        assert verdict.reason == "invite_link"
        assert verdict.confidence == 0.95

    def test_referral_link(self, make_message):
        policy = _policy(antiAds={"enabled": True})

        verdict = AdDetector().evaluate(make_message("https://shop.example/item?ref=abc"), policy)

        assert verdict.reason == "referral_link"
        assert verdict.confidence == 0.9

    def test_plain_channel_link_is_not_an_ad(self, make_message):
        policy = _policy(antiAds={"enabled": True})

        assert not AdDetector().evaluate(make_message("https://t.me/python_news"), policy).matched

    def test_sub_checks_can_be_switched_off(self, make_message):
        policy = _policy(antiAds={"enabled": True, "linkAds": False})

        assert not AdDetector().evaluate(make_message("https://t.me/+AbCdEf123"), policy).matched


class TestAutoDeleteRuleMatcher:
    def test_delete_commands_switch_with_exceptions(self, make_message):
        policy = _policy(autoDelete={
            "enabled": True,
            "deleteCommands": True,
            "exceptions": ["/rules"],
            "deleteAfterSeconds": 15,
        })
        matcher = AutoDeleteRuleMatcher()

        verdict = matcher.evaluate(make_message("/start@bot"), policy)
        assert verdict.matched
        assert verdict.reason == "command"
        assert verdict.delay_seconds == 15
        assert verdict.suggested_action == PunishmentKind.DELETE

        assert not matcher.evaluate(make_message("/rules"), policy).matched

    def test_first_matching_rule_sets_delay(self, make_message):
        policy = _policy(autoDelete={
            "enabled": True,
            "deleteAfterSeconds": 60,
            "rules": [
                {"type": "executable", "deleteAfter": 0},
                {"type": "archive", "deleteAfter": "5m"},
                {"type": "document"},
            ],
        })
        matcher = AutoDeleteRuleMatcher()

        exe = matcher.evaluate(make_message("", document_name="setup.EXE", document_mime="application/x-msdownload"), policy)
        archive = matcher.evaluate(make_message("", document_name="dump.zip", document_mime="application/zip"), policy)
        pdf = matcher.evaluate(make_message("", document_name="doc.pdf", document_mime="application/pdf"), policy)

        assert (exe.reason, exe.delay_seconds) == ("executable", 0)
        assert (archive.reason, archive.delay_seconds) == ("archive", 300)
        assert (pdf.reason, pdf.delay_seconds) == ("document", 60)

    def test_image_document_is_not_a_document(self, make_message):
        policy = _policy(autoDelete={"enabled": True, "rules": [{"type": "doc"}]})

        verdict = AutoDeleteRuleMatcher().evaluate(
            make_message("", document_name="cat.png", document_mime="image/png"),
            policy,
        )

        assert not verdict.matched

    def test_link_rule_keywords_are_whitelist(self, make_message):
        policy = _policy(autoDelete={
            "enabled": True,
            "rules": [{"type": "link", "keywords": ["github.com"]}],
        })
        matcher = AutoDeleteRuleMatcher()

        assert matcher.evaluate(make_message("https://spam.example/x"), policy).reason == "link"
        assert not matcher.evaluate(make_message("https://github.com/org/repo"), policy).matched
        assert not matcher.evaluate(make_message("github.com без ссылки"), policy).matched

    def test_long_text_and_forward(self, make_message):
        policy = _policy(autoDelete={
            "enabled": True,
            "rules": [{"type": "long", "maxLength": 10}, {"type": "forward"}],
        })
        matcher = AutoDeleteRuleMatcher()

        assert matcher.evaluate(make_message("x" * 11), policy).reason == "long_message"
        assert matcher.evaluate(make_message("short", is_forward=True), policy).reason == "forward"
        assert not matcher.evaluate(make_message("short"), policy).matched

    def test_keyword_and_regex_conditions_on_any_rule(self, make_message):
        policy = _policy(autoDelete={
            "enabled": True,
            "rules": [
                {"type": "sticker", "keywords": ["продам"]},
                {"type": "regex", "regex": r"\+7\d{10}"},
            ],
        })
        matcher = AutoDeleteRuleMatcher()

        assert matcher.evaluate(make_message("Продам гараж"), policy).reason == "keyword_match"
        assert matcher.evaluate(make_message("звони +79991234567"), policy).reason == "regex_match"

    def test_invalid_rule_regex_raises_policy_error(self, make_message):
        policy = _policy(autoDelete={"enabled": True, "rules": [{"type": "regex", "regex": "(("}]})

        with pytest.raises(PolicyError):
            AutoDeleteRuleMatcher().evaluate(make_message("text"), policy)
