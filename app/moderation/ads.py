# Copyright (c) 2025 sprowii
"""Антиреклама.

Проверки идут по порядку, срабатывает первая:
1. Стикерпак, в названии которого есть @ (реклама канала)
2. Ключевые слова из политики
3. Инвайт-ссылки t.me/+..., joinchat и реферальные ссылки (ref=)
"""
import re
from typing import Optional, Tuple

from app.moderation.base import Detector
from app.moderation.models import InboundMessage, Verdict
from app.moderation.policy import AdsPolicy, ModerationPolicy, raise_on_errors

URL_REGEX = re.compile(r"https?://\S+", re.IGNORECASE)
TELEGRAM_HOSTS = ("t.me/", "telegram.me/")

# Уверенность для каждого вида рекламы
STICKER_AD_CONFIDENCE = 0.9
KEYWORD_AD_CONFIDENCE = 0.8
INVITE_LINK_CONFIDENCE = 0.95
REFERRAL_LINK_CONFIDENCE = 0.9


def _check_sticker(message: InboundMessage) -> Optional[Tuple[str, float]]:
    if message.sticker_set_name and "@" in message.sticker_set_name:
        return f"sticker_ad:{message.sticker_set_name}", STICKER_AD_CONFIDENCE
    return None


def _check_keywords(text: str, part: AdsPolicy) -> Optional[Tuple[str, float]]:
    lowered = text.lower()
    for keyword in part.keywords:
        if keyword.lower() in lowered:
            return f"keyword_ad:{keyword}", KEYWORD_AD_CONFIDENCE
    return None


def _check_links(text: str) -> Optional[Tuple[str, float]]:
    for url in URL_REGEX.findall(text):
        lowered = url.lower()
        if any(host in lowered for host in TELEGRAM_HOSTS):
            path = lowered.split("/", 3)[-1]
            if "joinchat" in lowered or path.startswith("+"):
                return "invite_link", INVITE_LINK_CONFIDENCE
        if "ref=" in lowered:
            return "referral_link", REFERRAL_LINK_CONFIDENCE
    return None


class AdDetector(Detector):
    name = "ads"

    def is_enabled(self, policy: ModerationPolicy) -> bool:
        return policy.anti_ads.enabled

    def evaluate(self, message: InboundMessage, policy: ModerationPolicy) -> Verdict:
        part = policy.anti_ads
        raise_on_errors(part)
        text = message.text

        found = None
        if part.sticker_ads:
            found = _check_sticker(message)
        if found is None and part.keyword_ads and part.keywords and text:
            found = _check_keywords(text, part)
        if found is None and part.link_ads and text:
            found = _check_links(text)

        if found is None:
            return Verdict.no_match(self.name)

        reason, confidence = found
        return Verdict(
            detector=self.name,
            matched=True,
            reason=reason,
            confidence=confidence,
            suggested_action=part.action,
        )
