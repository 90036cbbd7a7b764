# neatlab

Tools for running and analysing NeuroEvolution of Augmenting Topologies
(NEAT) experiments, together with the classic benchmark tasks (XOR, single
pole and double pole balancing) used to check that network topologies
really evolve.

## Modules

- `neatlab.floats` — `Floats`, a `list` of numbers with descriptive
  statistics: `min`, `max`, `sum`, `mean`, `mean_variance`, `median`,
  `q25`, `q75`, `variance` and `std_dev`. On an empty list every statistic
  except `sum` (which is `0.0`) is NaN.
- `neatlab.context` — `new_context(options)` wraps NEAT options in a
  `NeatContext`; `from_context(ctx)` returns them or raises
  `OptionsNotFoundError`. `NeatContext.cancel()` asks a running experiment
  to stop; `cancelled()` reports whether that happened.
- `neatlab.generation` — `Generation`, the results of one epoch: champion,
  per-species fitness, age and complexity, diversity and winner
  statistics. `fill_population_statistics(pop)` collects them from a
  population; `to_dict` / `from_dict` convert to and from plain data, the
  champion becoming an `OrganismRecord`. `organism_complexity(organism)`
  returns the complexity of an organism's phenotype, or `MAX_COMPLEXITY`
  when it cannot be computed.
- `neatlab.trial` — `Trial`, the generations of one run, with average
  durations, champion series (`champions_fitness`,
  `champion_species_ages`, `champions_complexities`), `diversity`,
  `average` and `winner_statistics`.
- `neatlab.experiment` — `Experiment`, a collection of trials, and the
  abstract `GenerationEvaluator` and `TrialRunObserver`.
- `neatlab.xor` — the XOR task: `evaluate_organism` and
  `XorGenerationEvaluator`.
- `neatlab.pole` — single pole balancing: the simulator step `do_action`,
  `run_cart`, `organism_evaluate`, `CartPoleGenerationEvaluator` and
  `CartPoleParallelGenerationEvaluator` (organisms scored in worker
  threads).
- `neatlab.pole2` — double pole balancing: the `CartDoublePole` simulator
  (Runge-Kutta integration, Markov and non-Markov setups), `ActionType`
  (`CONTINUOUS` or `DISCRETE`), `organism_evaluate` and the 625-start
  `evaluate_organism_generalization`.
- `neatlab.pole2_eval` — `CartDoublePoleGenerationEvaluator` and
  `CartDoublePoleParallelGenerationEvaluator`.

## Statistics on a series

```python
from neatlab.floats import Floats

values = Floats([1.0, 4.0, 4.0])
values.mean()           # 3.0
values.mean_variance()  # [mean, unbiased variance]
values.median()         # 4.0
```

## Running an experiment

`Experiment.execute(ctx, start_genome, evaluator, trial_observer,
spawn_population, epoch_executor)` runs `options.num_runs` trials of at
most `options.num_generations` generations each. You supply:

- `spawn_population(start_genome, options)`, which returns the initial
  population of a trial (its `verify()` is called if it has one);
- `epoch_executor`, whose `next_epoch(ctx, generation_id, pop)` turns the
  population over to the next generation;
- a `GenerationEvaluator` that scores the organisms and records the
  outcome on the `Generation` it is given;
- optionally a `TrialRunObserver`.

A trial stops as soon as a generation is solved. `execute` raises
`OptionsNotFoundError` when the context holds no options, `ValueError`
when the spawner or epoch executor is missing, and `InterruptedError` when
the context was cancelled.

```python
from neatlab.context import from_context, new_context
from neatlab.experiment import Experiment, GenerationEvaluator


class MyTaskEvaluator(GenerationEvaluator):
    def generation_evaluate(self, ctx, pop, epoch):
        options = from_context(ctx)
        for organism in pop.organisms:
            ...  # set organism.fitness, mark winners on epoch
        epoch.fill_population_statistics(pop)


experiment = Experiment(id=0, max_fitness_score=16.0)
experiment.execute(
    new_context(options),
    start_genome,
    MyTaskEvaluator(),
    spawn_population=my_spawner,
    epoch_executor=my_epoch_executor,
)
```

The built-in evaluators take an output directory. Into a sub-directory per
trial they write the population (`gen_<id>`, every `options.print_every`
generations and when solved) and the winner's genome; when a
`graph_writer(stream, network)` is given, the winner's network is also
dumped as `.cyjs`, and `XorGenerationEvaluator` also accepts a
`dot_writer` for a `.dot` file.

## Results

```python
experiment.success_rate()
experiment.best_organism(True)        # (organism, trial index) or (None, -1)
experiment.avg_winner_statistics()    # nodes, genes, evaluations, diversity; -1 if unsolved
experiment.efficiency_score()
experiment.print_statistics()

with open("results.json", "wb") as stream:
    experiment.write(stream)          # id, name and trials as JSON

with open("results.npz", "wb") as stream:
    experiment.write_npz(stream)
```

`read(stream)` loads what `write` produced and raises `ValueError` on
malformed data. The `.npz` archive holds `trials_number`, the per-trial
mean and variance matrices `trials_fitness`, `trials_ages` and
`trials_complexity`, and for each trial `n` the epoch series
`trial_<n>_epoch_mean_{fitnesses,ages,complexities}`,
`trial_<n>_epoch_best_{fitnesses,ages,complexities}` and
`trial_<n>_epoch_diversity`.

## What this package does not do

neatlab holds no genome, network, species or population implementation,
no reproduction or mutation, and no readers for option or genome files.
The evaluators work with any objects that offer the attributes and
methods they use (for example organisms with `fitness`, `genotype` and
`phenotype()`, and networks with `load_sensors`, `forward_steps` or
`activate_steps`, `outputs` and `flush`), which you provide. There is no
command-line program; experiments are run from Python.