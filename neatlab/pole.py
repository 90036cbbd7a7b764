"""Single-pole cart balancing experiment: simulator, fitness and generation evaluators."""

from __future__ import annotations

import logging
import math
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TextIO

from neatlab.context import from_context
from neatlab.experiment import GenerationEvaluator
from neatlab.generation import Generation

log = logging.getLogger(__name__)

TWELVE_DEGREES = 12.0 * math.pi / 180.0
"""The pole angle, in radians, beyond which the pole counts as fallen."""

TRACK_LIMIT = 2.4
"""The cart position, in metres, beyond which the cart has left the track."""

_GRAVITY = 9.8
_MASS_CART = 1.0
_MASS_POLE = 0.5
_TOTAL_MASS = _MASS_POLE + _MASS_CART
_LENGTH = 0.5  # half the pole's length
_POLE_MASS_LENGTH = _MASS_POLE * _LENGTH
_FORCE_MAG = 10.0
_TAU = 0.02  # seconds between state updates
_FOUR_THIRDS = 1.3333333333333

GraphWriter = Callable[[TextIO, Any], None]


def do_action(
    action: int, x: float, x_dot: float, theta: float, theta_dot: float
) -> tuple[float, float, float, float]:
    """Apply a push (0 = left, otherwise right) and return the state TAU seconds later.

    The state is cart position, cart velocity, pole angle and pole angular
    velocity; it is advanced with Euler's method.
    """
    force = _FORCE_MAG if action > 0 else -_FORCE_MAG
    cos_theta = math.cos(theta)
    sin_theta = math.sin(theta)

    temp = (force + _POLE_MASS_LENGTH * theta_dot * theta_dot * sin_theta) / _TOTAL_MASS
    theta_acc = (_GRAVITY * sin_theta - cos_theta * temp) / (
        _LENGTH * (_FOUR_THIRDS - _MASS_POLE * cos_theta * cos_theta / _TOTAL_MASS)
    )
    x_acc = temp - _POLE_MASS_LENGTH * theta_acc * cos_theta / _TOTAL_MASS

    return (
        x + _TAU * x_dot,
        x_dot + _TAU * x_acc,
        theta + _TAU * theta_dot,
        theta_dot + _TAU * theta_acc,
    )


def _failed(x: float, theta: float) -> bool:
    return x < -TRACK_LIMIT or x > TRACK_LIMIT or theta < -TWELVE_DEGREES or theta > TWELVE_DEGREES


def run_cart(net: Any, winner_balancing_steps: int, random_start: bool) -> int:
    """Run the cart simulation driven by ``net`` and return the number of balanced steps.

    A disconnected network, or one that fails to activate, scores a single
    step. Errors raised while loading the sensors propagate.
    """
    x = x_dot = theta = theta_dot = 0.0
    if random_start:
        x = random.randrange(4800) / 1000.0 - 2.4
        x_dot = random.randrange(2000) / 1000.0 - 1.0
        theta = random.randrange(400) / 1000.0 - 0.2
        theta_dot = random.randrange(3000) / 1000.0 - 1.5

    try:
        depth = net.max_activation_depth_with_cap(0)
    except Exception as exc:  # depth estimation fails for networks with loops
        depth = getattr(exc, "depth", 0)
        log.warning(
            "Failed to estimate maximal depth of the network with loop.\nUsing default depth: %d",
            depth,
        )
    else:
        if depth == 0:
            # possibly disconnected: minimal fitness score
            return 1

    for steps in range(winner_balancing_steps):
        net.load_sensors(
            [
                1.0,  # bias
                (x + 2.4) / 4.8,
                (x_dot + 0.75) / 1.5,
                (theta + TWELVE_DEGREES) / 0.41,
                (theta_dot + 1.0) / 2.0,
            ]
        )
        try:
            activated = net.forward_steps(depth)
        except Exception as exc:  # a looping network is scored as one step
            log.debug("Failed to activate Network, reason: %s", exc)
            return 1
        if not activated:
            log.debug("Failed to activate Network")
            return 1

        action = 0 if net.outputs[0].activation > net.outputs[1].activation else 1
        x, x_dot, theta, theta_dot = do_action(action, x, x_dot, theta, theta_dot)

        if _failed(x, theta):
            return steps
    return max(winner_balancing_steps, 0)


def organism_evaluate(organism: Any, winner_balancing_steps: int, random_start: bool) -> bool:
    """Score an organism on the balancing task and return whether it is a winner.

    Fitness is mapped to [0, 1] on a logarithmic scale of balanced steps; a
    winner gets fitness 1 and error 0. Errors raised by the simulation leave
    the organism's scores untouched and count as not winning.
    """
    phenotype = organism.phenotype()
    try:
        steps = run_cart(phenotype, winner_balancing_steps, random_start)
    except Exception as exc:  # a broken network simply does not win
        log.debug("Cart simulation failed, reason: %s", exc)
        return False
    organism.fitness = float(steps)

    genotype = getattr(organism, "genotype", None)
    log.debug(
        "Organism #%3d\tfitness: %f",
        getattr(genotype, "id", 0),
        organism.fitness,
    )

    if organism.fitness >= float(winner_balancing_steps):
        organism.is_winner = True

    if organism.is_winner:
        organism.fitness = 1.0
        organism.error = 0.0
    elif organism.fitness == 0:
        organism.error = 1.0
    else:
        # most runs fail within ~100 steps while the target is far larger
        log_steps = math.log(float(winner_balancing_steps))
        organism.error = (log_steps - math.log(organism.fitness)) / log_steps
        organism.fitness = 1.0 - organism.error

    return organism.is_winner


def _trial_dir(out_dir: str | Path, trial_id: int) -> Path:
    directory = Path(out_dir) / str(trial_id)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _write_genome_plain(name: str, out_dir: str | Path, organism: Any, epoch: Generation) -> Path:
    phenotype = organism.phenotype()
    path = _trial_dir(out_dir, epoch.trial_id) / (
        f"{name}_{phenotype.node_count()}-{phenotype.link_count()}"
    )
    with open(path, "w", encoding="utf-8") as stream:
        organism.genotype.write(stream)
    return path


def _write_genome_graph(
    name: str, out_dir: str | Path, organism: Any, epoch: Generation, writer: GraphWriter
) -> Path:
    phenotype = organism.phenotype()
    path = _trial_dir(out_dir, epoch.trial_id) / (
        f"{name}_{phenotype.node_count()}-{phenotype.link_count()}.cyjs"
    )
    with open(path, "w", encoding="utf-8") as stream:
        writer(stream, phenotype)
    return path


def _write_population_plain(out_dir: str | Path, pop: Any, epoch: Generation) -> Path:
    path = _trial_dir(out_dir, epoch.trial_id) / f"gen_{epoch.id}"
    with open(path, "w", encoding="utf-8") as stream:
        pop.write_by_species(stream)
    return path


def _log_activation_depth(organism: Any) -> None:
    try:
        depth = organism.phenotype().max_activation_depth_with_cap(0)
    except Exception:  # purely informational
        return
    log.info("Activation depth of the winner: %d", depth)


def _record_winner(epoch: Generation, organism: Any, options: Any) -> None:
    epoch.solved = True
    epoch.winner_nodes = len(organism.genotype.nodes)
    epoch.winner_genes = organism.genotype.extrons()
    epoch.winner_evals = options.pop_size * epoch.id + organism.genotype.id
    epoch.champion = organism


@dataclass
class CartPoleGenerationEvaluator(GenerationEvaluator):
    """Evaluates generations on the single-pole balancing task.

    ``graph_writer(stream, network)``, when given, dumps the winner's network
    graph as Cytoscape JSON next to its genome.
    """

    output_path: str | Path
    random_start: bool = True
    win_balancing_steps: int = 1500000
    graph_writer: GraphWriter | None = None

    genome_file = "pole1_winner_genome"

    def generation_evaluate(self, ctx: Any, pop: Any, epoch: Generation) -> None:
        """Evaluate every organism, record the champion and dump results."""
        options = from_context(ctx)
        for organism in pop.organisms:
            won = organism_evaluate(organism, self.win_balancing_steps, self.random_start)
            if won and (epoch.champion is None or organism.fitness > epoch.champion.fitness):
                _record_winner(epoch, organism, options)
                if epoch.winner_nodes == 7:
                    try:
                        path = _write_genome_plain("pole1_optimal", self.output_path, organism, epoch)
                    except (OSError, LookupError) as exc:
                        log.error("Failed to dump optimal genome, reason: %s", exc)
                    else:
                        log.info("Dumped optimal genome to: %s", path)
        self._finish(options, pop, epoch)

    def _finish(self, options: Any, pop: Any, epoch: Generation) -> None:
        epoch.fill_population_statistics(pop)

        if epoch.solved or epoch.id % options.print_every == 0:
            _write_population_plain(self.output_path, pop, epoch)

        if not epoch.solved:
            return
        organism = epoch.champion
        _log_activation_depth(organism)

        try:
            path = _write_genome_plain(self.genome_file, self.output_path, organism, epoch)
        except (OSError, LookupError) as exc:
            log.error("Failed to dump winner organism's genome, reason: %s", exc)
        else:
            log.info("Generation #%d winner's genome dumped to: %s", epoch.id, path)

        if self.graph_writer is not None:
            try:
                path = _write_genome_graph(
                    self.genome_file, self.output_path, organism, epoch, self.graph_writer
                )
            except (OSError, LookupError, ValueError) as exc:
                log.error(
                    "Failed to dump winner organism's phenome Cytoscape JSON graph, reason: %s",
                    exc,
                )
            else:
                log.info(
                    "Generation #%d winner's phenome Cytoscape JSON graph dumped to: %s",
                    epoch.id,
                    path,
                )


@dataclass
class CartPoleParallelGenerationEvaluator(CartPoleGenerationEvaluator):
    """Evaluates the organisms of a generation concurrently on the single-pole task."""

    def generation_evaluate(self, ctx: Any, pop: Any, epoch: Generation) -> None:
        """Evaluate all organisms in worker threads, then record the champion."""
        options = from_context(ctx)

        seen: set[int] = set()
        for organism in pop.organisms:
            genome_id = organism.genotype.id
            if genome_id in seen:
                raise ValueError(f"organism with {genome_id} already exists in mapping")
            seen.add(genome_id)

        organisms = list(pop.organisms)
        with ThreadPoolExecutor() as pool:
            futures = [
                pool.submit(
                    organism_evaluate, organism, self.win_balancing_steps, self.random_start
                )
                for organism in organisms
            ]
            results = [future.result() for future in futures]

        for organism, won in zip(organisms, results):
            if won and (epoch.champion is None or organism.fitness > epoch.champion.fitness):
                _record_winner(epoch, organism, options)
                organism.is_winner = True

        self._finish(options, pop, epoch)