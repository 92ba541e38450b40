"""
Hero block: rotating caption phrases and the widget carousel.
"""

import random

DEFAULT_PHRASES = [
    "Где тепло живёт вечно.",
    "Бережно хранимое, никогда не забытое.",
    "Тихие отголоски светлых дней.",
    "Тихое место для того, что важно.",
    "Каждый момент — в сохранности.",
    "Как солнечный свет на старых фотографиях.",
    "То, что заставляло тебя улыбаться.",
    "Дом — это чувство, которое ты носишь в себе.",
    "Записано светом, запечатано временем.",
    "Потому что некоторые вещи должны остаться.",
    "Маленькие кусочки вечности.",
    "Время не стирает — оно укрывает.",
    "Каждый день — строчка в нашей истории.",
    "Мы помним, значит мы были.",
    "Светлое живёт дольше всего.",
    "Сквозь годы, сквозь тишину.",
    "Нити, из которых соткано наше тепло.",
    "Пусть ничего не пропадёт напрасно.",
    "Собрано с любовью, сохранено навсегда.",
    "Между строк — целая жизнь.",
    "И через сто лет — всё тот же свет.",
    "Хрупкое, но настоящее.",
    "Мы здесь, пока помним друг друга.",
    "Тихий огонь, что не гаснет.",
    "Любовь не нуждается в словах, но мы всё же запишем.",
    "Одно мгновение стоит тысячи слов.",
    "Нежность, сложенная в архив.",
    "Не забудь — здесь всё настоящее.",
    "Два сердца, одна история.",
    "Акварель чувств на холсте памяти.",
]

# Seconds between caption and carousel changes on the page.
PHRASE_INTERVAL = 4.5
CAROUSEL_INTERVAL = 5.0


def all_phrases(custom_phrases) -> list[str]:
    return DEFAULT_PHRASES + list(custom_phrases or [])


def pick_phrase(custom_phrases, rng=None) -> str:
    rng = rng or random
    return rng.choice(all_phrases(custom_phrases))


class CarouselPicker:
    """
    Picks widgets at random without repeating one until every widget has been shown.

    The used set holds indices into the widget list last seen; a different list
    (added, removed or reordered widgets) starts a fresh cycle.
    """

    def __init__(self, rng=None):
        self._rng = rng or random.Random()
        self._used: set[int] = set()
        self._ids: tuple = ()

    def pick(self, widgets):
        ids = tuple(widget.id for widget in widgets)
        if ids != self._ids:
            self._ids = ids
            self._used.clear()
        if not widgets:
            return None
        if len(widgets) == 1:
            return widgets[0]
        if len(self._used) >= len(widgets):
            self._used.clear()
        index = self._rng.choice([i for i in range(len(widgets)) if i not in self._used])
        self._used.add(index)
        return widgets[index]
