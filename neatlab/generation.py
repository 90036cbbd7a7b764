"""Results of evaluating one generation (epoch) of a population."""

from __future__ import annotations

import io
import logging
import math
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from operator import attrgetter
from typing import Any

from neatlab.floats import Floats

log = logging.getLogger(__name__)

EMPTY_DURATION = timedelta(microseconds=-1)
"""Returned when an average duration cannot be estimated."""

MAX_COMPLEXITY = sys.maxsize
"""Complexity reported when an organism's complexity cannot be computed."""


def organism_complexity(organism: Any) -> int:
    """Return the complexity of an organism's phenotype, or MAX_COMPLEXITY on failure."""
    if organism is None:
        log.warning("Can not estimate complexity of the organism. None provided.")
        return MAX_COMPLEXITY
    try:
        phenotype = organism.phenotype()
    except Exception as exc:  # the phenotype builder may fail in many ways
        log.warning("Failed to get phenotype of the organism, reason: %s", exc)
        return MAX_COMPLEXITY
    return phenotype.complexity()


@dataclass
class OrganismRecord:
    """A stored organism: its scores and the text of its genome."""

    fitness: float = 0.0
    is_winner: bool = False
    generation: int = 0
    expected_offspring: float = 0.0
    error: float = 0.0
    genome_id: int = 0
    genome: str = ""
    species: Any = field(default=None, compare=False, repr=False)
    network: Any = field(default=None, compare=False, repr=False)
    flag: int = field(default=0, compare=False)

    def phenotype(self) -> Any:
        """Return the organism's network, raising LookupError if it has none."""
        if self.network is None:
            raise LookupError(f"organism with genome {self.genome_id} has no phenotype")
        return self.network


def _organism_to_dict(organism: Any) -> dict[str, Any]:
    genotype = getattr(organism, "genotype", None)
    if genotype is not None:
        genome_id = genotype.id
        buffer = io.StringIO()
        genotype.write(buffer)
        genome_text = buffer.getvalue()
    else:
        genome_id = organism.genome_id
        genome_text = organism.genome
    return {
        "fitness": organism.fitness,
        "is_winner": organism.is_winner,
        "generation": organism.generation,
        "expected_offspring": organism.expected_offspring,
        "error": organism.error,
        "genome_id": genome_id,
        "genome": genome_text,
    }


def _organism_from_dict(data: dict[str, Any]) -> OrganismRecord:
    return OrganismRecord(
        fitness=float(data["fitness"]),
        is_winner=bool(data["is_winner"]),
        generation=int(data["generation"]),
        expected_offspring=float(data["expected_offspring"]),
        error=float(data["error"]),
        genome_id=int(data["genome_id"]),
        genome=str(data["genome"]),
    )


@dataclass
class Generation:
    """Execution results of one generation."""

    id: int = 0
    executed: datetime | None = None
    duration: timedelta = timedelta(0)
    champion: Any = None
    solved: bool = False
    fitness: Floats = field(default_factory=Floats)
    age: Floats = field(default_factory=Floats)
    complexity: Floats = field(default_factory=Floats)
    diversity: int = 0
    winner_evals: int = 0
    winner_nodes: int = 0
    winner_genes: int = 0
    trial_id: int = 0

    def fill_population_statistics(self, pop: Any) -> None:
        """Collect per-species statistics of the population's best organisms.

        Each species' organisms are sorted in place, most fit first. Unless the
        generation is already solved, the fittest of them becomes the champion.
        """
        max_fitness = -math.inf
        self.diversity = len(pop.species)
        self.age = Floats()
        self.complexity = Floats()
        self.fitness = Floats()
        for species in pop.species:
            species.organisms.sort(key=attrgetter("fitness"), reverse=True)
            best = species.organisms[0]
            self.age.append(float(species.age))
            self.complexity.append(float(organism_complexity(best)))
            self.fitness.append(best.fitness)
            if not self.solved and best.fitness > max_fitness:
                max_fitness = best.fitness
                self.champion = best

    def average(self) -> tuple[float, float, float]:
        """Return mean fitness, age and complexity of the best organisms per species."""
        return self.fitness.mean(), self.age.mean(), self.complexity.mean()

    def champion_complexity(self) -> int:
        """Return the champion's complexity, or MAX_COMPLEXITY if unavailable."""
        if self.champion is None:
            return MAX_COMPLEXITY
        return organism_complexity(self.champion)

    def sort_key(self) -> tuple[float, int]:
        """Key ordering generations by execution time, then by id."""
        stamp = -math.inf if self.executed is None else self.executed.timestamp()
        return stamp, self.id

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {
            "id": self.id,
            "executed": None if self.executed is None else self.executed.isoformat(),
            "solved": self.solved,
            "fitness": list(self.fitness),
            "age": list(self.age),
            "complexity": list(self.complexity),
            "diversity": self.diversity,
            "winner_evals": self.winner_evals,
            "winner_nodes": self.winner_nodes,
            "winner_genes": self.winner_genes,
            "duration": self.duration // timedelta(microseconds=1),
            "trial_id": self.trial_id,
            "champion": None if self.champion is None else _organism_to_dict(self.champion),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Generation:
        """Build a generation from the output of ``to_dict``."""
        try:
            executed = data["executed"]
            champion = data["champion"]
            return cls(
                id=int(data["id"]),
                executed=None if executed is None else datetime.fromisoformat(executed),
                solved=bool(data["solved"]),
                fitness=Floats(float(v) for v in data["fitness"]),
                age=Floats(float(v) for v in data["age"]),
                complexity=Floats(float(v) for v in data["complexity"]),
                diversity=int(data["diversity"]),
                winner_evals=int(data["winner_evals"]),
                winner_nodes=int(data["winner_nodes"]),
                winner_genes=int(data["winner_genes"]),
                duration=timedelta(microseconds=int(data["duration"])),
                trial_id=int(data["trial_id"]),
                champion=None if champion is None else _organism_from_dict(champion),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"failed to decode generation: {exc!r}") from exc