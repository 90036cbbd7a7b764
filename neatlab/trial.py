"""Statistics of one run (trial) of an experiment."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from operator import attrgetter
from typing import Any

from neatlab.floats import Floats
from neatlab.generation import EMPTY_DURATION, MAX_COMPLEXITY, Generation


@dataclass
class Trial:
    """The results of every generation evaluated in one trial."""

    id: int = 0
    generations: list[Generation] = field(default_factory=list)
    winner_generation: Generation | None = None
    duration: timedelta = timedelta(0)

    def avg_epoch_duration(self) -> timedelta:
        """Return the mean generation duration, or EMPTY_DURATION if there are none."""
        if not self.generations:
            return EMPTY_DURATION
        total = sum((g.duration for g in self.generations), timedelta(0))
        return total // len(self.generations)

    def recent_epoch_eval_time(self) -> datetime | None:
        """Return when the most recent generation was executed, or None."""
        times = [g.executed for g in self.generations if g.executed is not None]
        return max(times, default=None)

    def best_organism(self, only_solvers: bool) -> Any:
        """Return the fittest champion of all generations, or None.

        With ``only_solvers`` only champions of solved generations count.
        """
        candidates = [
            g.champion
            for g in self.generations
            if g.champion is not None and (g.solved or not only_solvers)
        ]
        if not candidates:
            return None
        return max(candidates, key=attrgetter("fitness"))

    def solved(self) -> bool:
        """Return True if any generation solved the task."""
        return any(g.solved for g in self.generations)

    def champions_fitness(self) -> Floats:
        """Return the champion fitness per generation (0 where there is none)."""
        return Floats(
            g.champion.fitness if g.champion is not None else 0.0 for g in self.generations
        )

    def champion_species_ages(self) -> Floats:
        """Return the age of the champion's species per generation."""
        return Floats(
            float(g.champion.species.age)
            if g.champion is not None and getattr(g.champion, "species", None) is not None
            else 0.0
            for g in self.generations
        )

    def champions_complexities(self) -> Floats:
        """Return the champion complexity per generation (0 where unknown)."""
        values = Floats()
        for g in self.generations:
            complexity = g.champion_complexity()
            values.append(float(complexity) if complexity != MAX_COMPLEXITY else 0.0)
        return values

    def diversity(self) -> Floats:
        """Return the number of species per generation."""
        return Floats(float(g.diversity) for g in self.generations)

    def average(self) -> tuple[Floats, Floats, Floats]:
        """Return per-generation mean fitness, age and complexity."""
        fitness, age, complexity = Floats(), Floats(), Floats()
        for g in self.generations:
            f, a, c = g.average()
            fitness.append(f)
            age.append(a)
            complexity.append(c)
        return fitness, age, complexity

    def winner_statistics(self) -> tuple[int, int, int, int]:
        """Return winner nodes, genes, evaluations and species diversity.

        The first solved generation is remembered as the winner generation.
        Without generations all four values are -1; with generations but no
        solution they are 0.
        """
        if self.winner_generation is None:
            if not self.generations:
                return -1, -1, -1, -1
            self.winner_generation = next((g for g in self.generations if g.solved), None)
            if self.winner_generation is None:
                return 0, 0, 0, 0
        w = self.winner_generation
        return w.winner_nodes, w.winner_genes, w.winner_evals, w.diversity

    def sort_key(self) -> tuple[float, int]:
        """Key ordering trials by most recent evaluation time, then by id."""
        recent = self.recent_epoch_eval_time()
        return (-math.inf if recent is None else recent.timestamp()), self.id

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {"id": self.id, "generations": [g.to_dict() for g in self.generations]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Trial:
        """Build a trial from the output of ``to_dict``."""
        try:
            trial_id = int(data["id"])
            generations = data["generations"]
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"failed to decode trial: {exc!r}") from exc
        return cls(id=trial_id, generations=[Generation.from_dict(g) for g in generations])