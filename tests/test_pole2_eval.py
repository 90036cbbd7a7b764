from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest

from neatlab.context import NeatContext, OptionsNotFoundError, new_context
from neatlab.generation import Generation
from neatlab.pole2 import ActionType
from neatlab.pole2_eval import (
    CartDoublePoleGenerationEvaluator,
    CartDoublePoleParallelGenerationEvaluator,
)


class FakeNetwork:
    def __init__(self, output=0.5, depth=1, activates=True, nodes=6, links=5):
        self.outputs = [SimpleNamespace(activation=output)]
        self.depth = depth
        self.activates = activates
        self.nodes = nodes
        self.links = links

    def max_activation_depth_with_cap(self, cap):
        return self.depth

    def load_sensors(self, values):
        pass

    def activate_steps(self, depth):
        return self.activates

    def flush(self):
        return True

    def complexity(self):
        return self.nodes + self.links

    def node_count(self):
        return self.nodes

    def link_count(self):
        return self.links


class FakeGenome:
    def __init__(self, genome_id, node_count=6):
        self.id = genome_id
        self.nodes = list(range(node_count))

    def extrons(self):
        return len(self.nodes) - 1

    def write(self, stream):
        stream.write(f"genomestart {self.id}\ngenomeend {self.id}\n")


@dataclass
class FakeOrganism:
    genotype: FakeGenome
    network: FakeNetwork
    fitness: float = 0.0
    error: float = 0.0
    is_winner: bool = False
    species: Any = None

    def phenotype(self):
        return self.network


@dataclass
class FakeSpecies:
    organisms: list
    age: int = 1
    max_fitness_ever: float = 0.0
    is_checked: bool = False

    def compute_max_and_avg_fitness(self):
        values = [o.fitness for o in self.organisms]
        return max(values), sum(values) / len(values)

    def find_champion(self):
        return max(self.organisms, key=lambda o: o.fitness)


@dataclass
class FakePopulation:
    organisms: list
    species: list = field(default_factory=list)

    def write_by_species(self, stream):
        for organism in self.organisms:
            organism.genotype.write(stream)


def make_population(networks, first_id=1):
    organisms = [FakeOrganism(FakeGenome(first_id + i), net) for i, net in enumerate(networks)]
    species = FakeSpecies(organisms=list(organisms))
    for organism in organisms:
        organism.species = species
    return FakePopulation(organisms=organisms, species=[species])


def make_ctx(pop_size=10, print_every=5):
    return new_context(SimpleNamespace(pop_size=pop_size, print_every=print_every))


def test_missing_options_raise(tmp_path):
    evaluator = CartDoublePoleGenerationEvaluator(tmp_path)
    pop = make_population([FakeNetwork(depth=0)])
    with pytest.raises(OptionsNotFoundError):
        evaluator.generation_evaluate(NeatContext(), pop, Generation())


def test_markov_disconnected_networks_are_not_solved(tmp_path):
    pop = make_population([FakeNetwork(depth=0), FakeNetwork(activates=False)])
    epoch = Generation(id=0, trial_id=0)
    CartDoublePoleGenerationEvaluator(tmp_path, markov=True).generation_evaluate(
        make_ctx(), pop, epoch
    )

    assert epoch.solved is False
    first, second = pop.organisms
    assert 0.0 < first.fitness < 1.0
    assert first.fitness + first.error == pytest.approx(1.0)
    # both a disconnected and a looping network score one balanced step
    assert first.fitness == second.fitness
    assert epoch.diversity == 1
    assert epoch.champion in pop.organisms
    assert (tmp_path / "0" / "gen_0").exists()


def test_population_dump_skipped_between_print_intervals(tmp_path):
    pop = make_population([FakeNetwork(depth=0)])
    epoch = Generation(id=3, trial_id=2)
    CartDoublePoleGenerationEvaluator(tmp_path).generation_evaluate(
        make_ctx(print_every=5), pop, epoch
    )
    assert not (tmp_path / "2" / "gen_3").exists()
    assert epoch.champion is pop.organisms[0]


def test_markov_balanced_network_wins(tmp_path):
    # with no push the system stays at rest for the whole run
    balancing = FakeNetwork(output=0.5, nodes=8, links=7)
    pop = make_population([balancing], first_id=4)
    epoch = Generation(id=0, trial_id=0)
    written = []

    def graph_writer(stream, network):
        written.append(network)
        stream.write("{}")

    evaluator = CartDoublePoleGenerationEvaluator(
        tmp_path, markov=True, action_type=ActionType.CONTINUOUS, graph_writer=graph_writer
    )
    evaluator.generation_evaluate(make_ctx(pop_size=10), pop, epoch)

    organism = pop.organisms[0]
    assert epoch.solved is True
    assert epoch.champion is organism
    assert organism.is_winner is True
    assert organism.fitness == 1.0
    assert organism.error == 0.0
    assert epoch.winner_evals == organism.genotype.id
    assert epoch.winner_nodes == len(organism.genotype.nodes)
    assert epoch.winner_genes == organism.genotype.extrons()
    trial_dir = tmp_path / "0"
    assert (trial_dir / "gen_0").exists()
    assert (trial_dir / "pole2_winner_genome_8-7").exists()
    assert (trial_dir / "pole2_winner_genome_8-7.cyjs").read_text() == "{}"
    assert written == [balancing]


def test_non_markov_champion_failing_long_run_is_not_a_winner(tmp_path):
    pop = make_population([FakeNetwork(depth=0), FakeNetwork(depth=0)])
    epoch = Generation(id=0, trial_id=0)
    CartDoublePoleGenerationEvaluator(tmp_path, markov=False).generation_evaluate(
        make_ctx(), pop, epoch
    )

    assert epoch.solved is False
    assert all(o.fitness == 0.0001 for o in pop.organisms)
    assert not any(o.is_winner for o in pop.organisms)
    assert pop.species[0].is_checked is True


def test_parallel_matches_serial_and_skips_population_dump(tmp_path):
    serial_pop = make_population([FakeNetwork(depth=0), FakeNetwork(activates=False)])
    parallel_pop = make_population([FakeNetwork(depth=0), FakeNetwork(activates=False)])

    CartDoublePoleGenerationEvaluator(tmp_path / "serial").generation_evaluate(
        make_ctx(), serial_pop, Generation(id=0)
    )
    epoch = Generation(id=0)
    CartDoublePoleParallelGenerationEvaluator(tmp_path / "parallel").generation_evaluate(
        make_ctx(), parallel_pop, epoch
    )

    assert [o.fitness for o in parallel_pop.organisms] == [
        o.fitness for o in serial_pop.organisms
    ]
    assert [o.error for o in parallel_pop.organisms] == [o.error for o in serial_pop.organisms]
    assert epoch.solved is False
    assert not (tmp_path / "parallel").exists()


def test_parallel_rejects_duplicate_genome_ids(tmp_path):
    pop = make_population([FakeNetwork(depth=0), FakeNetwork(depth=0)])
    pop.organisms[1].genotype.id = pop.organisms[0].genotype.id
    with pytest.raises(ValueError, match="already exists in mapping"):
        CartDoublePoleParallelGenerationEvaluator(tmp_path).generation_evaluate(
            make_ctx(), pop, Generation()
        )