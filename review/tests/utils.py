import random


class FirstPickRandom(random.Random):
    """Детерминированный источник: всегда берет первых кандидатов по порядку."""

    def sample(self, population, k, **kwargs):
        return list(population)[:k]
