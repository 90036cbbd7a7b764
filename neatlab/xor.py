"""The XOR experiment: checks that network topology evolves.

XOR is not linearly separable, so a solving network needs a hidden unit
that combines both inputs. Recurrent connections should be disabled for
this experiment, or the network may solve it by memorising the order of
the inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from neatlab.context import from_context
from neatlab.experiment import GenerationEvaluator
from neatlab.generation import Generation
from neatlab.pole import (
    GraphWriter,
    _log_activation_depth,
    _record_winner,
    _trial_dir,
    _write_genome_plain,
    _write_population_plain,
)

log = logging.getLogger(__name__)

FITNESS_THRESHOLD = 15.5
"""The fitness above which an organism solves XOR."""

MAX_FITNESS = 16.0
"""The greatest fitness the XOR fitness function gives."""

# the first value of every input row is the bias
_XOR_INPUTS = (
    (1.0, 0.0, 0.0),
    (1.0, 0.0, 1.0),
    (1.0, 1.0, 0.0),
    (1.0, 1.0, 1.0),
)


def evaluate_organism(organism: Any) -> bool:
    """Score an organism on the four XOR cases and return whether it solves XOR.

    Fitness is the square of four minus the summed output error. A network
    of zero depth is skipped; one that does not activate gets fitness 0 and
    error 1. Errors raised while loading, activating or flushing propagate.
    """
    phenotype = organism.phenotype()

    try:
        depth = phenotype.max_activation_depth_with_cap(0)
    except Exception as exc:  # depth estimation fails for networks with loops
        depth = getattr(exc, "depth", 0)
        log.warning(
            "Failed to estimate maximal depth of the network with loop:\n%s\nUsing default depth: %d",
            getattr(organism, "genotype", None),
            depth,
        )
    log.debug("Network depth: %d for organism: %s", depth, getattr(organism, "genotype", None))
    if depth == 0:
        log.debug("ALERT: Network depth is ZERO for Genome: %s", getattr(organism, "genotype", None))
        return False

    success = False
    outputs: list[float] = []
    for inputs in _XOR_INPUTS:
        phenotype.load_sensors(list(inputs))
        success = phenotype.forward_steps(depth)
        outputs.append(phenotype.outputs[0].activation)
        phenotype.flush()

    if success:
        error_sum = abs(outputs[0]) + abs(1.0 - outputs[1]) + abs(1.0 - outputs[2]) + abs(outputs[3])
        target = 4.0 - error_sum
        organism.fitness = (4.0 - error_sum) ** 2
        organism.error = (4.0 - target) ** 2
    else:
        # a flawed network: flag as anomaly
        organism.error = 1.0
        organism.fitness = 0.0

    organism.is_winner = organism.fitness > FITNESS_THRESHOLD
    if organism.is_winner:
        log.info(">>>> Output activations: %s", outputs)
    return organism.is_winner


def _write_genome_graph(
    name: str,
    out_dir: str | Path,
    organism: Any,
    epoch: Generation,
    writer: GraphWriter,
    suffix: str,
) -> Path:
    phenotype = organism.phenotype()
    path = _trial_dir(out_dir, epoch.trial_id) / (
        f"{name}_{phenotype.node_count()}-{phenotype.link_count()}{suffix}"
    )
    with open(path, "w", encoding="utf-8") as stream:
        writer(stream, phenotype)
    return path


@dataclass
class XorGenerationEvaluator(GenerationEvaluator):
    """Evaluates generations on the XOR task and dumps results into ``output_path``.

    ``dot_writer`` and ``graph_writer``, when given, write the winner's
    network as a DOT graph and as Cytoscape JSON.
    """

    output_path: str | Path
    dot_writer: GraphWriter | None = None
    graph_writer: GraphWriter | None = None

    genome_file = "xor_winner_genome"

    def generation_evaluate(self, ctx: Any, pop: Any, epoch: Generation) -> None:
        """Evaluate every organism, record the champion and dump results."""
        options = from_context(ctx)
        for organism in pop.organisms:
            won = evaluate_organism(organism)
            if won and (epoch.champion is None or organism.fitness > epoch.champion.fitness):
                _record_winner(epoch, organism, options)
                if epoch.winner_nodes == 5:
                    try:
                        path = _write_genome_plain("xor_optimal", self.output_path, organism, epoch)
                    except (OSError, LookupError) as exc:
                        log.error("Failed to dump optimal genome, reason: %s", exc)
                    else:
                        log.info("Dumped optimal genome to: %s", path)

        epoch.fill_population_statistics(pop)

        if epoch.solved or epoch.id % options.print_every == 0:
            _write_population_plain(self.output_path, pop, epoch)

        if epoch.solved:
            self._dump_winner(epoch)

    def _dump_winner(self, epoch: Generation) -> None:
        organism = epoch.champion
        _log_activation_depth(organism)

        try:
            path = _write_genome_plain(self.genome_file, self.output_path, organism, epoch)
        except (OSError, LookupError) as exc:
            log.error("Failed to dump winner organism's genome, reason: %s", exc)
        else:
            log.info("Generation #%d winner's genome dumped to: %s", epoch.id, path)

        graphs = (
            (self.dot_writer, ".dot", "DOT graph"),
            (self.graph_writer, ".cyjs", "Cytoscape JSON graph"),
        )
        for writer, suffix, label in graphs:
            if writer is None:
                continue
            try:
                path = _write_genome_graph(
                    self.genome_file, self.output_path, organism, epoch, writer, suffix
                )
            except (OSError, LookupError, ValueError) as exc:
                log.error("Failed to dump winner organism's phenome %s, reason: %s", label, exc)
            else:
                log.info("Generation #%d winner's phenome %s dumped to: %s", epoch.id, label, path)