import io
import random

import pytest
from PIL import Image

from app.moderation.captcha import CAPTCHA_ALPHABET, GIF_WORDS, ChallengeFactory
from app.moderation.policy import VerificationPolicy


class TestMathChallenges:
    @pytest.mark.parametrize("seed", range(20))
    def test_easy_is_small_addition(self, seed):
        challenge = ChallengeFactory(random.Random(seed)).math("easy")

        a, op, b = challenge.prompt.split()[:3]
        assert op == "+"
        assert 1 <= int(a) <= 10 and 1 <= int(b) <= 10
        assert int(challenge.answer) == int(a) + int(b)

    @pytest.mark.parametrize("seed", range(20))
    def test_medium_is_addition_or_subtraction(self, seed):
        challenge = ChallengeFactory(random.Random(seed)).math("medium")

        a, op, b = challenge.prompt.split()[:3]
        assert op in "+-"
        assert 10 <= int(a) <= 59 and 1 <= int(b) <= 50
        expected = int(a) + int(b) if op == "+" else int(a) - int(b)
        assert int(challenge.answer) == expected

    @pytest.mark.parametrize("seed", range(20))
    def test_hard_is_multiplication(self, seed):
        challenge = ChallengeFactory(random.Random(seed)).math("hard")

        a, op, b = challenge.prompt.split()[:3]
        assert op == "×"
        assert 10 <= int(a) <= 30 and 2 <= int(b) <= 9
        assert int(challenge.answer) == int(a) * int(b)


class TestPictureChallenges:
    def test_image_code_is_png(self):
        challenge = ChallengeFactory(random.Random(1)).image_code(6)

        assert challenge.image.startswith(b"\x89PNG")
        assert len(challenge.answer) == 6
        assert set(challenge.answer) <= set(CAPTCHA_ALPHABET)
        assert Image.open(io.BytesIO(challenge.image)).size == (320, 120)

    def test_gif_is_animated(self):
        challenge = ChallengeFactory(random.Random(1)).gif_word()

        assert challenge.animation.startswith(b"GIF8")
        assert challenge.answer in GIF_WORDS
        assert Image.open(io.BytesIO(challenge.animation)).n_frames > 1


class TestChallengeFactory:
    def test_create_follows_policy_type(self):
        factory = ChallengeFactory(random.Random(3))

        assert factory.create(VerificationPolicy(type="math")).type == "math"
        assert factory.create(VerificationPolicy(type="image", captcha_length=3)).image is not None

    def test_channel_challenge_has_no_answer(self):
        challenge = ChallengeFactory().create(VerificationPolicy(type="channel", channel_id="@news"))

        assert challenge.answer == ""
        assert challenge.challenge_data() == {
            "channel_id": "@news",
            "prompt": "Подпишитесь на канал и нажмите кнопку ниже",
        }
