import random
from typing import Hashable, Iterable, List, Optional, Sequence, Set, Tuple

MAX_ATTEMPTS = 100


class GenerationFailure(Exception):
    pass


class InvalidInput(GenerationFailure):
    pass


class Unsatisfiable(GenerationFailure):
    def __init__(self, attempts: int, solvable: bool):
        self.attempts = attempts
        self.solvable = solvable
        if solvable:
            msg = f"Не удалось составить пары за {attempts} попыток"
        else:
            msg = "С такими парочками распределение невозможно"
        super().__init__(msg)


def normalize_exclusions(
    participants: Sequence[Hashable],
    exclusions: Iterable[Iterable[Hashable]],
) -> Set[frozenset]:
    """
    Пары-исключения (парочки) -> множество frozenset.
    Порядок внутри пары не важен: (a, b) == (b, a).
    """
    known = set(participants)
    result: Set[frozenset] = set()

    for pair in exclusions:
        items = list(pair)
        if len(items) == 1 or (len(items) == 2 and items[0] == items[1]):
            raise InvalidInput(f"Участник не может быть в паре сам с собой: {items[0]!r}")
        if len(items) != 2:
            raise InvalidInput(f"Исключение должно состоять из двух участников: {items!r}")

        unknown = [x for x in items if x not in known]
        if unknown:
            raise InvalidInput(f"Неизвестный участник в исключении: {unknown[0]!r}")

        result.add(frozenset(items))

    return result


def _validate(participants: Sequence[Hashable]):
    if len(participants) < 2:
        raise InvalidInput("Нужно минимум 2 участника")
    if len(set(participants)) != len(participants):
        raise InvalidInput("Участники повторяются")


def _can_give(giver, receiver, excluded: Set[frozenset]) -> bool:
    return giver != receiver and frozenset((giver, receiver)) not in excluded


def _first_fit(
    givers: List[Hashable],
    receivers: List[Hashable],
    excluded: Set[frozenset],
) -> Optional[List[Tuple[Hashable, Hashable]]]:
    used = set()
    pairs: List[Tuple[Hashable, Hashable]] = []

    for giver in givers:
        receiver = next(
            (r for r in receivers if r not in used and _can_give(giver, r, excluded)),
            None,
        )
        if receiver is None:
            # тупик: попытка выбрасывается целиком
            return None
        used.add(receiver)
        pairs.append((giver, receiver))

    return pairs


def generate_assignments(
    participants: Sequence[Hashable],
    exclusions: Iterable[Iterable[Hashable]] = (),
    rng: Optional[random.Random] = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> List[Tuple[Hashable, Hashable]]:
    """
    Тайный санта с парочками.

    Каждая попытка: дарители и получатели перемешиваются независимо,
    каждому дарителю по порядку достаётся первый свободный получатель,
    который не он сам и не его пара. Если кому-то никого не досталось,
    попытка начинается заново с новым перемешиванием.

    Метод жадный и неполный: при неудаче за max_attempts попыток
    бросается Unsatisfiable, даже если решение в принципе есть
    (это видно по Unsatisfiable.solvable).
    """
    _validate(participants)
    excluded = normalize_exclusions(participants, exclusions)

    rng = rng or random.Random()
    givers = list(participants)
    receivers = list(participants)

    for _ in range(max_attempts):
        rng.shuffle(givers)
        rng.shuffle(receivers)

        pairs = _first_fit(givers, receivers, excluded)
        if pairs is not None:
            return pairs

    raise Unsatisfiable(max_attempts, has_valid_assignment(participants, excluded))


def has_valid_assignment(
    participants: Sequence[Hashable],
    exclusions: Iterable[Iterable[Hashable]] = (),
) -> bool:
    """
    Точная проверка: существует ли вообще допустимое распределение.
    Паросочетание в двудольном графе даритель -> получатель (алгоритм Куна).
    """
    _validate(participants)
    excluded = normalize_exclusions(participants, exclusions)

    allowed = {
        g: [r for r in participants if _can_give(g, r, excluded)]
        for g in participants
    }
    owner: dict = {}

    def augment(giver, seen: set) -> bool:
        for r in allowed[giver]:
            if r in seen:
                continue
            seen.add(r)
            if r not in owner or augment(owner[r], seen):
                owner[r] = giver
                return True
        return False

    return all(augment(g, set()) for g in participants)


def is_valid_assignment_set(
    participants: Sequence[Hashable],
    exclusions: Iterable[Iterable[Hashable]],
    pairs: Iterable[Tuple[Hashable, Hashable]],
) -> bool:
    pairs = list(pairs)
    givers = [g for g, _ in pairs]
    receivers = [r for _, r in pairs]
    everyone = set(participants)

    if len(givers) != len(everyone) or set(givers) != everyone:
        return False
    if len(set(receivers)) != len(receivers) or set(receivers) != everyone:
        return False

    excluded = {frozenset(p) for p in exclusions}
    return all(_can_give(g, r, excluded) for g, r in pairs)
