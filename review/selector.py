import random


class CandidateSelector:
    """
    Случайный выбор ревьюверов из списка кандидатов.

    Источник случайности передается в конструктор. Если он не задан,
    на каждый вызов создается свой random.Random, общий генератор между
    потоками не используется.
    """

    def __init__(self, rng: random.Random = None):
        self._rng = rng

    def _source(self) -> random.Random:
        return self._rng if self._rng is not None else random.Random()

    def select(self, candidates, k: int) -> list:
        candidates = list(candidates)
        count = min(k, len(candidates))
        if count <= 0:
            return []
        return self._source().sample(candidates, count)

    def pick_one(self, candidates):
        selected = self.select(candidates, 1)
        return selected[0] if selected else None
