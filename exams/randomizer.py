import random
from typing import Any, Dict, List, Optional, Sequence, TypeVar

T = TypeVar("T")


def shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """
    Fisher-Yates over a copy of ``items``; the input is left untouched.
    """
    rng = rng or random.Random()
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def shuffle_paper(questions, seed: Optional[int] = None) -> Dict[str, Any]:
    """
    Build a per-attempt paper order: question ids in shuffled order and,
    for every question, its option ids shuffled independently.

    Stored on the attempt as JSON, hence the string keys.
    """
    rng = random.Random(seed)
    ordered = shuffle(questions, rng)
    return {
        "questions": [q.id for q in ordered],
        "options": {
            str(q.id): [o.id for o in shuffle(q.options, rng)]
            for q in ordered
        },
    }
