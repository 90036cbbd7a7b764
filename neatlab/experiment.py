"""A collection of trials forming one experiment, with its statistics and runner."""

from __future__ import annotations

import json
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, BinaryIO, Callable

import numpy as np

from neatlab.context import from_context
from neatlab.floats import Floats
from neatlab.generation import EMPTY_DURATION, Generation, organism_complexity
from neatlab.trial import Trial

log = logging.getLogger(__name__)


def _divide(numerator: float, denominator: float) -> float:
    """Divide with IEEE semantics: NaN for 0/0 and signed infinity for x/0."""
    if denominator == 0:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator)
    return numerator / denominator


def _format_duration(duration: timedelta) -> str:
    return f"{duration.total_seconds():.6f}s"


def _species_age(organism: Any) -> int:
    species = getattr(organism, "species", None)
    return 0 if species is None else species.age


class GenerationEvaluator(ABC):
    """Evaluates one generation (epoch) of an evolving population."""

    @abstractmethod
    def generation_evaluate(self, ctx: Any, pop: Any, epoch: Generation) -> None:
        """Evaluate the population's organisms and record the results in ``epoch``."""


class TrialRunObserver(ABC):
    """Receives notifications about the lifecycle of experiment trials."""

    @abstractmethod
    def trial_run_started(self, trial: Trial) -> None:
        """Called before any generation of a trial is evaluated."""

    @abstractmethod
    def trial_run_finished(self, trial: Trial) -> None:
        """Called after a trial finished or a solver was found."""

    @abstractmethod
    def epoch_evaluated(self, trial: Trial, epoch: Generation) -> None:
        """Called after each generation of a trial is evaluated."""


@dataclass
class Experiment:
    """A series of trials of one experiment.

    ``max_fitness_score`` is the greatest fitness the experiment's fitness
    function can give; when positive it normalises fitness in the
    efficiency score.
    """

    id: int = 0
    name: str = ""
    rand_seed: int = 0
    trials: list[Trial] = field(default_factory=list)
    max_fitness_score: float = 0.0

    def avg_trial_duration(self) -> timedelta:
        """Return the mean trial duration, or EMPTY_DURATION without trials."""
        if not self.trials:
            return EMPTY_DURATION
        total = sum((t.duration for t in self.trials), timedelta(0))
        return total // len(self.trials)

    def avg_epoch_duration(self) -> timedelta:
        """Return the mean of the trials' average generation durations."""
        if not self.trials:
            return EMPTY_DURATION
        total = sum((t.avg_epoch_duration() for t in self.trials), timedelta(0))
        return total // len(self.trials)

    def avg_generations_per_trial(self) -> float:
        """Return the mean number of generations evaluated per trial."""
        if not self.trials:
            return 0.0
        return sum(len(t.generations) for t in self.trials) / len(self.trials)

    def most_recent_trial_eval_time(self) -> datetime | None:
        """Return when the most recent generation of any trial ran, or None."""
        times = [
            recent
            for recent in (t.recent_epoch_eval_time() for t in self.trials)
            if recent is not None
        ]
        return max(times, default=None)

    def best_organism(self, only_solvers: bool) -> tuple[Any, int]:
        """Return the fittest organism of all trials and the index of its trial.

        With ``only_solvers`` only solving champions count. Returns
        ``(None, -1)`` when no organism qualifies.
        """
        best, best_index = None, -1
        for index, trial in enumerate(self.trials):
            organism = trial.best_organism(only_solvers)
            if organism is not None and (best is None or organism.fitness > best.fitness):
                best, best_index = organism, index
        return best, best_index

    def solved(self) -> bool:
        """Return True if at least one trial found a solution."""
        return any(t.solved() for t in self.trials)

    def best_fitness(self) -> Floats:
        """Return the fitness of the best organism of each trial."""
        return Floats(
            org.fitness if org is not None else 0.0
            for org in (t.best_organism(False) for t in self.trials)
        )

    def best_species_age(self) -> Floats:
        """Return the species age of the best organism of each trial."""
        return Floats(
            float(_species_age(org)) if org is not None else 0.0
            for org in (t.best_organism(False) for t in self.trials)
        )

    def best_complexity(self) -> Floats:
        """Return the complexity of the best organism of each trial."""
        return Floats(
            float(organism_complexity(org)) if org is not None else 0.0
            for org in (t.best_organism(False) for t in self.trials)
        )

    def avg_diversity(self) -> Floats:
        """Return the mean number of species in each trial."""
        return Floats(t.diversity().mean() for t in self.trials)

    def epochs_per_trial(self) -> Floats:
        """Return the number of generations in each trial."""
        return Floats(float(len(t.generations)) for t in self.trials)

    def trials_solved(self) -> int:
        """Return the number of trials that found a solution."""
        return sum(1 for t in self.trials if t.solved())

    def success_rate(self) -> float:
        """Return the share of trials that found a solution."""
        if not self.trials:
            return 0.0
        return self.trials_solved() / len(self.trials)

    def avg_winner_statistics(self) -> tuple[float, float, float, float]:
        """Return mean winner nodes, genes, evaluations and diversity over solved trials.

        All four are -1 when no trial was solved.
        """
        stats = [t.winner_statistics() for t in self.trials if t.solved()]
        if not stats:
            return -1.0, -1.0, -1.0, -1.0
        count = len(stats)
        nodes, genes, evals, diversity = (sum(column) / count for column in zip(*stats))
        return nodes, genes, evals, diversity

    def efficiency_score(self) -> float:
        """Return the efficiency score of the found solutions.

        Efficient solvers take less time per epoch and fewer generations per
        trial, produce simpler winners, and reach high fitness and success
        rate. Only comparable between experiments of the same kind.
        """
        mean_complexity, mean_fitness = 0.0, 0.0
        if len(self.trials) > 1:
            count = 0
            for trial in self.trials:
                if not trial.solved():
                    continue
                if trial.winner_generation is None:
                    trial.winner_statistics()
                mean_complexity += float(trial.winner_generation.champion_complexity())
                mean_fitness += trial.winner_generation.champion.fitness
                count += 1
            mean_complexity = _divide(mean_complexity, count)
            mean_fitness = _divide(mean_fitness, count)

        fitness_score = mean_fitness
        if self.max_fitness_score > 0:
            fitness_score = (fitness_score / self.max_fitness_score) * 100

        score = self.penalty_score(mean_complexity)
        if score > 0:
            score = _divide(self.success_rate() * fitness_score, math.log(score))
        return score

    def penalty_score(self, mean_complexity: float) -> float:
        """Return epoch milliseconds times generations per trial times complexity."""
        return (
            self.avg_epoch_duration().total_seconds()
            * 1000.0
            * self.avg_generations_per_trial()
            * mean_complexity
        )

    def print_statistics(self) -> None:
        """Print the experiment's statistics to standard output."""
        print(
            f"\nSolved {self.trials_solved()} trials from {len(self.trials)}, "
            f"success rate: {self.success_rate():f}"
        )
        print(f"Random seed: {self.rand_seed}")
        print(
            f"Average\n\tTrial duration:\t\t{_format_duration(self.avg_trial_duration())}"
            f"\n\tEpoch duration:\t\t{_format_duration(self.avg_epoch_duration())}"
            f"\n\tGenerations/trial:\t{self.avg_generations_per_trial():.1f}"
        )

        champion, trial_index = self.best_organism(True)
        if champion is not None:
            nodes, genes, evals, diversity = self.trials[trial_index].winner_statistics()
            print(
                f"\nChampion found in {trial_index} trial run\n\tNodes:\t\t\t{nodes}"
                f"\n\tGenes:\t\t\t{genes}\n\tEvaluations:\t\t{evals}\n\n\tDiversity:\t\t{diversity}"
            )
            print(
                f"\tComplexity:\t\t{organism_complexity(champion)}"
                f"\n\tAge:\t\t\t{_species_age(champion)}\n\tFitness:\t\t{champion.fitness:f}"
            )
        else:
            print("\nNo winner found in the experiment!!!")

        mean_complexity, mean_diversity, mean_age, mean_fitness = 0.0, 0.0, 0.0, 0.0
        if len(self.trials) > 1:
            avg_nodes = avg_genes = avg_evals = avg_divers = avg_generations = 0.0
            count = 0
            for trial in self.trials:
                if not trial.solved():
                    continue
                nodes, genes, evals, diversity = trial.winner_statistics()
                avg_nodes += nodes
                avg_genes += genes
                avg_evals += evals
                avg_divers += diversity
                avg_generations += len(trial.generations)
                winner = trial.winner_generation
                mean_complexity += float(winner.champion_complexity())
                mean_age += float(_species_age(winner.champion))
                mean_fitness += winner.champion.fitness
                count += 1
            print(
                "\nAverages among winners (successfull solvers)"
                f"\n\tAvg Nodes:\t\t{_divide(avg_nodes, count):.1f}"
                f"\n\tAvg Genes:\t\t{_divide(avg_genes, count):.1f}"
                f"\n\tAvg Evaluations:\t{_divide(avg_evals, count):.1f}"
                f"\n\tGenerations/trial:\t{_divide(avg_generations, count):.1f}"
                f"\n\n\tDiversity:\t\t{_divide(avg_divers, count):f}"
            )
            mean_complexity = _divide(mean_complexity, count)
            mean_age = _divide(mean_age, count)
            mean_fitness = _divide(mean_fitness, count)
            print(
                f"\tComplexity:\t\t{mean_complexity:f}\n\tAge:\t\t\t{mean_age:f}"
                f"\n\tFitness:\t\t{mean_fitness:f}"
            )

        for trial in self.trials:
            fitness, age, complexity = trial.average()
            mean_complexity += complexity.mean()
            mean_diversity += trial.diversity().mean()
            mean_age += age.mean()
            mean_fitness += fitness.mean()
        count = len(self.trials)
        print(
            "\nAverages of the best organisms evaluated during experiment"
            f"\n\tDiversity:\t\t{_divide(mean_diversity, count):f}"
            f"\n\tComplexity:\t\t{_divide(mean_complexity, count):f}"
            f"\n\tAge:\t\t\t{_divide(mean_age, count):f}"
            f"\n\tFitness:\t\t{_divide(mean_fitness, count):f}"
        )
        print(f"\nEfficiency score:\t\t{self.efficiency_score():f}\n")

    def write(self, stream: BinaryIO) -> None:
        """Write the experiment's id, name and trials to a binary stream as JSON."""
        payload = {
            "id": self.id,
            "name": self.name,
            "trials": [t.to_dict() for t in self.trials],
        }
        stream.write(json.dumps(payload).encode("utf-8"))

    def read(self, stream: BinaryIO) -> None:
        """Replace id, name and trials with those read from a stream written by ``write``."""
        raw = stream.read()
        try:
            data = json.loads(raw)
            experiment_id = int(data["id"])
            name = str(data["name"])
            trials = [Trial.from_dict(t) for t in data["trials"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"failed to decode experiment: {exc}") from exc
        self.id, self.name, self.trials = experiment_id, name, trials

    def write_npz(self, stream: BinaryIO) -> None:
        """Dump the experiment's statistics as a NumPy NPZ archive.

        The archive holds ``trials_number``; ``trials_fitness``,
        ``trials_ages`` and ``trials_complexity`` with a mean and variance
        row per trial; and per trial ``i`` the arrays
        ``trial_i_epoch_mean_{fitnesses,ages,complexities}``,
        ``trial_i_epoch_best_{fitnesses,ages,complexities}`` and
        ``trial_i_epoch_diversity``.
        """
        fitness_mat, ages_mat, complexity_mat = self.fitness_age_complexity_matrices()
        arrays: dict[str, np.ndarray] = {
            "trials_number": np.array([float(len(self.trials))]),
            "trials_fitness": fitness_mat,
            "trials_ages": ages_mat,
            "trials_complexity": complexity_mat,
        }
        for index, trial in enumerate(self.trials):
            fitness, age, complexity = trial.average()
            prefix = f"trial_{index}_epoch"
            arrays[f"{prefix}_mean_fitnesses"] = np.asarray(fitness, dtype=float)
            arrays[f"{prefix}_mean_ages"] = np.asarray(age, dtype=float)
            arrays[f"{prefix}_mean_complexities"] = np.asarray(complexity, dtype=float)
            arrays[f"{prefix}_best_fitnesses"] = np.asarray(trial.champions_fitness(), dtype=float)
            arrays[f"{prefix}_best_ages"] = np.asarray(trial.champion_species_ages(), dtype=float)
            arrays[f"{prefix}_best_complexities"] = np.asarray(
                trial.champions_complexities(), dtype=float
            )
            arrays[f"{prefix}_diversity"] = np.asarray(trial.diversity(), dtype=float)
        np.savez(stream, **arrays)

    def fitness_age_complexity_matrices(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (trials x 2) arrays of mean and variance of fitness, age and complexity."""
        rows = [
            [series.mean_variance() for series in trial.average()] for trial in self.trials
        ]
        fitness = np.array([row[0] for row in rows], dtype=float).reshape(-1, 2)
        ages = np.array([row[1] for row in rows], dtype=float).reshape(-1, 2)
        complexity = np.array([row[2] for row in rows], dtype=float).reshape(-1, 2)
        return fitness, ages, complexity

    def sort_key(self) -> tuple[float, int]:
        """Key ordering experiments by most recent evaluation time, then by id."""
        recent = self.most_recent_trial_eval_time()
        return (-math.inf if recent is None else recent.timestamp()), self.id

    def execute(
        self,
        ctx: Any,
        start_genome: Any,
        evaluator: GenerationEvaluator,
        trial_observer: TrialRunObserver | None = None,
        spawn_population: Callable[[Any, Any], Any] | None = None,
        epoch_executor: Any = None,
    ) -> None:
        """Run the experiment's trials.

        ``spawn_population(start_genome, options)`` creates the initial
        population of each trial; ``epoch_executor.next_epoch(ctx,
        generation_id, pop)`` turns a population over to its next epoch.
        Raises OptionsNotFoundError when ``ctx`` holds no options and
        InterruptedError when the context is cancelled.
        """
        options = from_context(ctx)
        if spawn_population is None:
            raise ValueError("a population spawner is required")
        if epoch_executor is None:
            raise ValueError("an epoch executor is required")

        num_runs = options.num_runs
        if len(self.trials) < num_runs:
            self.trials.extend(Trial() for _ in range(num_runs - len(self.trials)))

        for run in range(num_runs):
            trial_start = time.perf_counter()

            log.info(">>>>> Spawning new population")
            pop = spawn_population(start_genome, options)
            verify = getattr(pop, "verify", None)
            if verify is not None:
                log.info(">>>>> Verifying spawned population")
                verify()

            trial = Trial(id=run)
            if trial_observer is not None:
                trial_observer.trial_run_started(trial)

            for generation_id in range(options.num_generations):
                if ctx.cancelled():
                    raise InterruptedError("context canceled")

                log.info(">>>>> Generation:%3d\tRun: %d", generation_id, run)
                generation = Generation(id=generation_id, trial_id=run)
                generation_start = time.perf_counter()
                evaluator.generation_evaluate(ctx, pop, generation)
                generation.executed = datetime.now().astimezone()
                elapsed = time.perf_counter() - generation_start

                if not generation.solved:
                    log.debug(">>>>> start next generation")
                    epoch_executor.next_epoch(ctx, generation_id, pop)

                generation.duration = timedelta(seconds=elapsed)
                trial.generations.append(generation)

                if trial_observer is not None:
                    trial_observer.epoch_evaluated(trial, generation)

                if generation.solved:
                    log.info(
                        ">>>>> The winner organism found in [%d] generation, fitness: %f <<<<<",
                        generation_id,
                        generation.champion.fitness,
                    )
                    if trial_observer is not None:
                        trial_observer.trial_run_finished(trial)
                    break

            trial.duration = timedelta(seconds=time.perf_counter() - trial_start)
            self.trials[run] = trial

            if trial_observer is not None:
                trial_observer.trial_run_finished(trial)