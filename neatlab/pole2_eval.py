"""Generation evaluators for the double-pole cart balancing experiment."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
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
    _write_genome_graph,
    _write_genome_plain,
    _write_population_plain,
)
from neatlab.pole2 import (
    ActionType,
    CartDoublePole,
    evaluate_organism_generalization,
    organism_evaluate,
)

log = logging.getLogger(__name__)


def _new_cart_pole(markov: bool) -> CartDoublePole:
    return CartDoublePole(is_markov=markov, non_markov_long=False, generalization_test=False)


@dataclass
class CartDoublePoleGenerationEvaluator(GenerationEvaluator):
    """Evaluates generations on the double-pole task, Markov or non-Markov.

    In the non-Markov setup a generation is solved only when the champion of
    the fittest unchecked species passes the generalization test.
    ``graph_writer(stream, network)``, when given, dumps the winner's network
    graph as Cytoscape JSON next to its genome.
    """

    output_path: str | Path
    markov: bool = True
    action_type: ActionType = ActionType.CONTINUOUS
    graph_writer: GraphWriter | None = None

    genome_file = "pole2_winner_genome"

    def generation_evaluate(self, ctx: Any, pop: Any, epoch: Generation) -> None:
        """Evaluate every organism, find the champion and dump the results."""
        options = from_context(ctx)
        cart_pole = _new_cart_pole(self.markov)

        for organism in pop.organisms:
            won = organism_evaluate(organism, cart_pole, self.action_type)
            if won and (epoch.champion is None or organism.fitness > epoch.champion.fitness):
                _record_winner(epoch, organism, options)
                organism.is_winner = True

        if not self.markov:
            epoch.solved = False
            champion = evaluate_organism_generalization(pop.species, cart_pole, self.action_type)
            if champion.is_winner:
                _record_winner(epoch, champion, options)

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

        if self.graph_writer is None:
            return
        try:
            path = _write_genome_graph(
                self.genome_file, self.output_path, organism, epoch, self.graph_writer
            )
        except (OSError, LookupError, ValueError) as exc:
            log.error(
                "Failed to dump winner organism's phenome Cytoscape JSON graph, reason: %s", exc
            )
        else:
            log.info(
                "Generation #%d winner's phenome Cytoscape JSON graph dumped to: %s",
                epoch.id,
                path,
            )


@dataclass
class CartDoublePoleParallelGenerationEvaluator(CartDoublePoleGenerationEvaluator):
    """Evaluates the organisms of a generation concurrently, each on its own cart."""

    genome_file = "pole2_parallel_winner_genome"

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
                    organism_evaluate, organism, _new_cart_pole(self.markov), self.action_type
                )
                for organism in organisms
            ]
            results = [future.result() for future in futures]

        for organism, won in zip(organisms, results):
            if won and (epoch.champion is None or organism.fitness > epoch.champion.fitness):
                _record_winner(epoch, organism, options)
                organism.is_winner = True

        epoch.fill_population_statistics(pop)

        if epoch.solved:
            self._dump_winner(epoch)