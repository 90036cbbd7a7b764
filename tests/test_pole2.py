import math
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest

from neatlab.pole2 import (
    MARKOV_MAX_STEPS,
    NON_MARKOV_LONG_MAX_STEPS,
    THIRTY_SIX_DEGREES,
    ActionType,
    CartDoublePole,
    evaluate_organism_generalization,
    organism_evaluate,
)


class FakeNet:
    def __init__(self, output=0.5, depth=1, activates=True, depth_error=None, activation_error=None):
        self.outputs = [SimpleNamespace(activation=output)]
        self.depth = depth
        self.activates = activates
        self.depth_error = depth_error
        self.activation_error = activation_error
        self.inputs = []
        self.flushes = 0

    def max_activation_depth_with_cap(self, cap):
        if self.depth_error is not None:
            raise self.depth_error
        return self.depth

    def load_sensors(self, values):
        self.inputs.append(list(values))

    def activate_steps(self, depth):
        if self.activation_error is not None:
            raise self.activation_error
        return self.activates

    def flush(self):
        self.flushes += 1
        return True


@dataclass
class FakeOrganism:
    net: Any
    fitness: float = 0.0
    error: float = 0.0
    is_winner: bool = False
    genotype: Any = field(default_factory=lambda: SimpleNamespace(id=1))

    def phenotype(self):
        return self.net


@dataclass
class FakeSpecies:
    organisms: list
    max_fitness_ever: float = 0.0
    is_checked: bool = False

    def compute_max_and_avg_fitness(self):
        values = [o.fitness for o in self.organisms]
        return max(values), sum(values) / len(values)

    def find_champion(self):
        return max(self.organisms, key=lambda o: o.fitness)


def test_outside_bounds():
    cp = CartDoublePole(True)
    assert not cp.outside_bounds()
    cp.state[0] = 2.5
    assert cp.outside_bounds()
    cp.state[0] = 0.0
    cp.state[4] = -(THIRTY_SIX_DEGREES + 0.01)
    assert cp.outside_bounds()


def test_reset_state_markov_zeroes_everything():
    cp = CartDoublePole(True)
    cp.state = [1.0] * 6
    cp.balanced_time_steps = 5
    cp.cart_pos_sum = 3.0
    cp.reset_state()
    assert cp.state == [0.0] * 6
    assert cp.balanced_time_steps == 0
    assert cp.cart_pos_sum == 0.0


def test_reset_state_non_markov_tilts_long_pole():
    cp = CartDoublePole(False)
    cp.state = [1.0] * 6
    cp.reset_state()
    assert cp.state == [0.0, 0.0, math.pi / 180.0, 0.0, 0.0, 0.0]


def test_reset_state_generalization_keeps_state():
    cp = CartDoublePole(False, generalization_test=True)
    cp.state = [0.1, 0.2, 0.3, 0.4, 0.0, 0.0]
    cp.balanced_time_steps = 7
    cp.reset_state()
    assert cp.state == [0.1, 0.2, 0.3, 0.4, 0.0, 0.0]
    assert cp.balanced_time_steps == 0


def test_step_at_rest_with_neutral_action_has_no_acceleration():
    derivs = CartDoublePole(True).step(0.5, [0.0] * 6)
    assert derivs == [0.0] * 6


def test_step_force_is_symmetric():
    cp = CartDoublePole(True)
    right = cp.step(1.0, [0.0] * 6)
    left = cp.step(0.0, [0.0] * 6)
    assert right[1] > 0
    assert left[1] == pytest.approx(-right[1])
    assert left[3] == pytest.approx(-right[3])


def test_rk4_at_equilibrium_stays_put():
    cp = CartDoublePole(True)
    state = [0.0] * 6
    assert cp.rk4(0.5, state, cp.step(0.5, state), 0.01) == [0.0] * 6


def test_perform_action_at_equilibrium_counts_balanced_step():
    cp = CartDoublePole(True)
    cp.perform_action(0.5, 3.0)
    assert cp.state == [0.0] * 6
    assert cp.balanced_time_steps == 1
    assert cp.jiggle_step[3] == 0.0


def test_perform_action_push_moves_cart_right():
    cp = CartDoublePole(True)
    cp.perform_action(1.0, 0.0)
    assert cp.state[1] > 0
    assert cp.state[0] > 0
    assert cp.cart_pos_sum == pytest.approx(abs(cp.state[0]))
    assert cp.jiggle_step[0] > 0


@pytest.mark.parametrize("markov, expected", [(True, 1.0), (False, 0.0001)])
def test_eval_net_disconnected(markov, expected):
    assert CartDoublePole(markov).eval_net(FakeNet(depth=0), ActionType.CONTINUOUS) == expected


def test_eval_net_depth_error_scores_zero():
    net = FakeNet(depth_error=RuntimeError("loop"))
    assert CartDoublePole(True).eval_net(net, ActionType.CONTINUOUS) == 0.0


@pytest.mark.parametrize("markov, expected", [(True, 1.0), (False, 0.0001)])
def test_eval_net_failed_activation(markov, expected):
    net = FakeNet(activates=False)
    assert CartDoublePole(markov).eval_net(net, ActionType.CONTINUOUS) == expected


def test_eval_net_markov_push_fails_early():
    cp = CartDoublePole(True)
    net = FakeNet(output=1.0)
    steps = cp.eval_net(net, ActionType.CONTINUOUS)
    assert 0 < steps < MARKOV_MAX_STEPS
    assert cp.outside_bounds()
    assert cp.balanced_time_steps == steps
    assert len(net.inputs[0]) == 7
    assert net.inputs[0][0] == 0.5
    assert net.inputs[0][6] == 0.5


def test_discrete_action_matches_thresholded_continuous():
    discrete = CartDoublePole(True)
    continuous = CartDoublePole(True)
    a = discrete.eval_net(FakeNet(output=0.4), ActionType.DISCRETE)
    b = continuous.eval_net(FakeNet(output=0.0), ActionType.CONTINUOUS)
    assert a == b
    assert discrete.state == continuous.state


def test_eval_net_non_markov_inputs_and_fitness():
    cp = CartDoublePole(False)
    net = FakeNet(output=0.5)
    fitness = cp.eval_net(net, ActionType.CONTINUOUS)
    assert fitness > 0
    assert len(net.inputs[0]) == 4
    assert net.inputs[0][0] == 0.0
    assert net.inputs[0][1] > 0
    assert net.inputs[0][3] == 1.0


def test_eval_net_generalization_returns_balanced_steps():
    cp = CartDoublePole(False, generalization_test=True)
    cp.state = [0.0, 0.0, 0.05, 0.0, 0.0, 0.0]
    result = cp.eval_net(FakeNet(output=1.0), ActionType.CONTINUOUS)
    assert result == cp.balanced_time_steps


def test_organism_evaluate_markov_scales_fitness():
    organism = FakeOrganism(FakeNet(output=1.0))
    winner = organism_evaluate(organism, CartDoublePole(True), ActionType.CONTINUOUS)
    assert winner is False
    assert 0.0 < organism.fitness < 1.0
    assert organism.fitness + organism.error == pytest.approx(1.0)


def test_organism_evaluate_propagates_activation_error():
    organism = FakeOrganism(FakeNet(activation_error=RuntimeError("broken")))
    with pytest.raises(RuntimeError):
        organism_evaluate(organism, CartDoublePole(True), ActionType.CONTINUOUS)


def test_organism_evaluate_non_markov_long_not_winner():
    cp = CartDoublePole(False, non_markov_long=True)
    organism = FakeOrganism(FakeNet(output=1.0))
    assert organism_evaluate(organism, cp, ActionType.CONTINUOUS) is False
    assert organism.fitness < NON_MARKOV_LONG_MAX_STEPS


def test_generalization_picks_unchecked_species_and_restores_fitness():
    strong = FakeSpecies([FakeOrganism(FakeNet(output=1.0), fitness=0.9)], max_fitness_ever=5.0)
    improving = FakeSpecies([FakeOrganism(FakeNet(output=1.0), fitness=0.4)], max_fitness_ever=0.1)
    cp = CartDoublePole(False)
    champion = evaluate_organism_generalization([strong, improving], cp, ActionType.CONTINUOUS)
    assert champion is improving.organisms[0]
    assert champion.fitness == 0.4
    assert champion.is_winner is False
    assert improving.is_checked and strong.is_checked
    assert champion.net.flushes == 0


def test_generalization_all_checked_uses_last_species():
    first = FakeSpecies([FakeOrganism(FakeNet(output=1.0), fitness=0.9)], max_fitness_ever=5.0)
    last = FakeSpecies([FakeOrganism(FakeNet(output=1.0), fitness=0.2)], max_fitness_ever=5.0)
    champion = evaluate_organism_generalization(
        [first, last], CartDoublePole(False), ActionType.CONTINUOUS
    )
    assert champion is last.organisms[0]
    assert champion.fitness == 0.2


def test_generalization_without_species_raises():
    with pytest.raises(ValueError):
        evaluate_organism_generalization([], CartDoublePole(False), ActionType.CONTINUOUS)