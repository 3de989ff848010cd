"""Puzzle rewards: which artifacts, doors and air a solved puzzle grants.

The graph is plain data. Applying it is only ever done by the gateway on a
puzzle's first ``solved`` transition, which is what makes rewards
at-most-once per puzzle per room.
"""
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from werkzeug.utils import import_string

from .errors import InvalidArgument

ENDING_KEY = 'maat'


@dataclass(frozen=True)
class PuzzleReward:
    artifacts: Tuple[Tuple[str, int], ...] = ()
    doors: Tuple[str, ...] = ()
    air_bonus: int = 0


@dataclass
class AppliedReward:
    air_award: int = 0
    artifacts_awarded: List[str] = field(default_factory=list)
    doors_opened: List[str] = field(default_factory=list)


DEFAULT_GRAPH: Dict[str, PuzzleReward] = {
    'cartouche': PuzzleReward(artifacts=(('ankh_key', 1),), doors=('ankh_door',), air_bonus=60),
    'nilometer': PuzzleReward(doors=('vent_grate',), air_bonus=90),
    'stars': PuzzleReward(doors=('light_shaft',)),
    'canopic': PuzzleReward(artifacts=(('shabti', 1),), doors=('sarcophagus_gate',)),
    'trade': PuzzleReward(artifacts=(('counterweight_stones', 1),), doors=('final_door',)),
    'sword_trial': PuzzleReward(artifacts=(('bronze_khopesh', 1),)),
}

# Answers per puzzle; a room plays one variant, picked from its seed.
DEFAULT_VARIANTS: Dict[str, list] = {
    'cartouche': [
        ['reed', 'water', 'lion', 'vulture'],
        ['basket', 'vulture', 'reed', 'loaf'],
        ['owl', 'water', 'reed', 'lion'],
    ],
    'nilometer': [
        {'cubits': 16, 'palms': 3},
        {'cubits': 14, 'palms': 5},
        {'cubits': 18, 'palms': 1},
    ],
    'stars': [
        {'shaft': 'north', 'mirrorA': 2, 'mirrorB': 5},
        {'shaft': 'south', 'mirrorA': 4, 'mirrorB': 1},
    ],
    'canopic': [
        {'imsety': 'liver', 'hapi': 'lungs', 'duamutef': 'stomach', 'qebehsenuef': 'intestines'},
    ],
    'trade': [
        {'cedar': 'byblos', 'incense': 'punt', 'gold': 'nubia', 'turquoise': 'sinai'},
    ],
    'sword_trial': [
        {'word': 'khopesh'},
    ],
}


def parse_graph(raw) -> Dict[str, PuzzleReward]:
    """Build a graph from plain config data, e.g. loaded from JSON.

    ``{'cartouche': {'artifacts': {'ankh_key': 1}, 'doors': ['ankh_door'], 'air_bonus': 60}}``
    """
    graph = {}
    for puzzle_key, entry in (raw or {}).items():
        if isinstance(entry, PuzzleReward):
            graph[puzzle_key] = entry
            continue
        artifacts = entry.get('artifacts') or {}
        if isinstance(artifacts, dict):
            artifacts = artifacts.items()
        graph[puzzle_key] = PuzzleReward(
            artifacts=tuple((str(k), int(q)) for k, q in artifacts),
            doors=tuple(entry.get('doors') or ()),
            air_bonus=int(entry.get('air_bonus') or 0),
        )
    return graph


def _normalise(value):
    if isinstance(value, str):
        return value.strip().casefold()
    if isinstance(value, dict):
        return {str(k): _normalise(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    return value


class ProgressionGraph:
    def __init__(self, graph=None, variants=None, checker: Optional[Callable] = None):
        self.graph = parse_graph(graph) if graph is not None else dict(DEFAULT_GRAPH)
        self.variants = variants if variants is not None else DEFAULT_VARIANTS
        self._checker = checker

    @classmethod
    def from_config(cls, config):
        checker = config.get('ANSWER_CHECKER')
        if isinstance(checker, str):
            checker = import_string(checker)
        return cls(
            graph=config.get('PROGRESSION_GRAPH'),
            variants=config.get('PUZZLE_VARIANTS'),
            checker=checker,
        )

    def door_keys(self) -> List[str]:
        keys = []
        for reward in self.graph.values():
            for door in reward.doors:
                if door not in keys:
                    keys.append(door)
        return keys

    def reward_for(self, puzzle_key: str) -> PuzzleReward:
        if puzzle_key == ENDING_KEY or puzzle_key not in self.graph:
            raise InvalidArgument(f'unknown puzzle {puzzle_key!r}')
        return self.graph[puzzle_key]

    def variant_for(self, room, puzzle_key: str):
        options = self.variants.get(puzzle_key) or []
        if not options:
            raise InvalidArgument(f'no variants configured for {puzzle_key!r}')
        rng = random.Random(f'{room.seed}:{puzzle_key}')
        return options[rng.randrange(len(options))]

    def check_answer(self, room, puzzle_key: str, answer) -> bool:
        self.reward_for(puzzle_key)
        if self._checker is not None:
            return bool(self._checker(room, puzzle_key, answer))
        return _normalise(answer) == _normalise(self.variant_for(room, puzzle_key))

    def apply(self, store, room, puzzle_key: str) -> AppliedReward:
        """Grant the puzzle's rewards. Callers hold the room lock and have
        just flipped the puzzle to solved."""
        reward = self.reward_for(puzzle_key)
        applied = AppliedReward()
        for artifact_key, qty in reward.artifacts:
            store.add_artifact(room.id, artifact_key, qty)
            applied.artifacts_awarded.append(artifact_key)
        for door_key in reward.doors:
            store.open_door(room.id, door_key)
            applied.doors_opened.append(door_key)
        if reward.air_bonus:
            store.add_air_bonus(room, reward.air_bonus)
            applied.air_award = reward.air_bonus
        return applied
