# Copyright (c) 2025 sprowii
import io
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from PIL import Image, ImageDraw, ImageFont

from app.moderation.models import VerificationType
from app.moderation.policy import VerificationPolicy

CAPTCHA_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GIF_WORDS = ("DOGE", "MOON", "STAR", "ROCK", "WAVE", "LION", "BEAR", "FISH")

IMAGE_SIZE = (320, 120)
GIF_FRAMES = 6


class CaptchaDifficulty(str, Enum):
    """Уровни сложности арифметической проверки."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass
class Challenge:
    """Сгенерированное задание для нового участника.

    answer пустой для проверки подпиской: там ответ проверяется через Telegram.
    """
    type: str
    prompt: str
    answer: str = ""
    image: Optional[bytes] = None
    animation: Optional[bytes] = None
    data: Dict[str, str] = field(default_factory=dict)

    def challenge_data(self) -> Dict[str, str]:
        """Данные для сохранения в записи проверки."""
        stored = dict(self.data)
        stored["prompt"] = self.prompt
        if self.answer:
            stored["answer"] = self.answer
        return stored


class ChallengeFactory:
    """Генератор заданий для проверки новых участников.

    Сложность арифметики:
    - Easy: сложение однозначных (3 + 7)
    - Medium: сложение и вычитание (42 - 17)
    - Hard: умножение (23 × 4)
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def create(self, policy: VerificationPolicy) -> Challenge:
        """Сгенерировать задание нужного типа.

        Args:
            policy: Настройки проверки группы

        Returns:
            Challenge с текстом задания, ответом и картинкой при необходимости
        """
        if policy.type == VerificationType.IMAGE.value:
            return self.image_code(policy.captcha_length)
        if policy.type == VerificationType.GIF.value:
            return self.gif_word()
        if policy.type == VerificationType.CHANNEL.value:
            return Challenge(
                type=VerificationType.CHANNEL.value,
                prompt="Подпишитесь на канал и нажмите кнопку ниже",
                data={"channel_id": policy.channel_id or ""},
            )
        return self.math(policy.difficulty)

    # ========================================================================
    # MATH
    # ========================================================================

    def math(self, difficulty: str = "medium") -> Challenge:
        difficulty = difficulty.lower()
        if difficulty == CaptchaDifficulty.EASY.value:
            a = self.rng.randint(1, 10)
            b = self.rng.randint(1, 10)
            question, answer = f"{a} + {b} = ?", a + b
        elif difficulty == CaptchaDifficulty.HARD.value:
            a = self.rng.randint(10, 30)
            b = self.rng.randint(2, 9)
            question, answer = f"{a} × {b} = ?", a * b
        else:
            a = self.rng.randint(10, 59)
            b = self.rng.randint(1, 50)
            if self.rng.choice("+-") == "+":
                question, answer = f"{a} + {b} = ?", a + b
            else:
                question, answer = f"{a} - {b} = ?", a - b
        return Challenge(type=VerificationType.MATH.value, prompt=question, answer=str(answer))

    # ========================================================================
    # IMAGE / GIF
    # ========================================================================

    def _random_code(self, length: int) -> str:
        return "".join(self.rng.choice(CAPTCHA_ALPHABET) for _ in range(length))

    def _font(self, size: int) -> ImageFont.ImageFont:
        return ImageFont.load_default(size=size)

    def _draw_frame(self, text: str, shift: int = 0) -> Image.Image:
        width, height = IMAGE_SIZE
        img = Image.new("RGB", IMAGE_SIZE, color=(255, 255, 255))
        draw = ImageDraw.Draw(img)
        font = self._font(56)

        step = (width - 40) // max(len(text), 1)
        for index, char in enumerate(text):
            x = 20 + index * step + self.rng.randint(-6, 6) + shift
            y = self.rng.randint(15, 40)
            color = (self.rng.randint(0, 120), self.rng.randint(0, 120), self.rng.randint(0, 120))
            draw.text((x, y), char, fill=color, font=font)

        # Искажающие линии поверх текста
        for _ in range(6):
            start = (0, self.rng.randint(0, height))
            end = (width, self.rng.randint(0, height))
            color = (self.rng.randint(150, 220), self.rng.randint(150, 220), self.rng.randint(150, 220))
            draw.line([start, end], fill=color, width=self.rng.randint(1, 3))
        return img

    def image_code(self, length: int = 4) -> Challenge:
        code = self._random_code(length)
        buffer = io.BytesIO()
        self._draw_frame(code).save(buffer, format="PNG")
        return Challenge(
            type=VerificationType.IMAGE.value,
            prompt="Введите код с картинки",
            answer=code,
            image=buffer.getvalue(),
        )

    def gif_word(self) -> Challenge:
        word = self.rng.choice(GIF_WORDS)
        frames: List[Image.Image] = []
        for index in range(GIF_FRAMES):
            # Слово видно только на чётных кадрах
            text = word if index % 2 == 0 else self._random_code(len(word))
            frames.append(self._draw_frame(text, shift=self.rng.randint(-10, 10)))
        buffer = io.BytesIO()
        frames[0].save(
            buffer,
            format="GIF",
            save_all=True,
            append_images=frames[1:],
            duration=[900 if i % 2 == 0 else 250 for i in range(GIF_FRAMES)],
            loop=0,
        )
        return Challenge(
            type=VerificationType.GIF.value,
            prompt="Введите слово, которое дольше всего видно на анимации",
            answer=word,
            animation=buffer.getvalue(),
        )
