import os
import pandas as pd
import tempfile
import torch
import unittest

from template_induction.exceptions import ConfigurationError
from template_induction.modules.gibbs import (
    EntityGibbsSampler,
    WorkshopGibbsSampler,
    create_sampler,
    load_sampler,
)
from template_induction.modules.model_state import ModelState
from template_induction.modules.sampler import LikelihoodTracker
from tests.helpers import toy_corpus


class TestEntityGibbsSampler(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.sampler = EntityGibbsSampler(
            toy_corpus(),
            num_topics=4,
            num_templates=2,
            include_verbs=True,
            random_seed=3,
            check_interval=5,
        )
        cls.sampler.run_sampler(30)

    def test_best_sample_is_returned(self):
        sampler = self.__class__.sampler
        history = sampler.runner.tracker.history
        assert len(history) == 6, f"Expected a check every 5 sweeps, got {history}"
        assert sampler.best_likelihood == max(history)

        # The restored state is the best sample, not the last one
        recomputed = sampler.compute_data_likelihood()
        assert abs(recomputed - sampler.best_likelihood) < 1e-6, (
            f"Restored likelihood {recomputed} differs from best {sampler.best_likelihood}"
        )
        sampler.state.check_distributions()

    def test_same_seed_same_sample(self):
        kwargs = dict(num_topics=3, random_seed=11, check_interval=4)
        one = EntityGibbsSampler(toy_corpus(), **kwargs)
        two = EntityGibbsSampler(toy_corpus(), **kwargs)
        one.run_sampler(8)
        two.run_sampler(8)
        assert one.state.assignments == two.state.assignments

    def test_short_run_is_still_checked(self):
        sampler = EntityGibbsSampler(toy_corpus(), num_topics=2, check_interval=15)
        sampler.run_sampler(3)
        assert len(sampler.runner.tracker.history) == 1
        assert sampler.runner.steps_taken == 3
        sampler.run_sampler(3)
        assert sampler.runner.steps_taken == 6
        assert len(sampler.runner.tracker.history) == 2

    def test_topic_distribution(self):
        sampler = self.__class__.sampler
        z = sampler.unlabel(0, 1)
        probs = sampler.topic_distribution(0, 1)
        sampler.relabel(0, 1, z)
        assert probs.shape == (4,)
        assert abs(probs.sum().item() - 1.0) < 1e-9

    def test_word_distributions(self):
        sampler = self.__class__.sampler
        dists = sampler.word_distributions_per_topic()
        assert set(dists) == {"token", "dep", "feat", "verb"}
        for topic, probs in dists["dep"].items():
            assert abs(sum(probs.values()) - 1.0) < 1e-9, f"P(dep|topic={topic})"

    def test_save_and_load(self):
        sampler = self.__class__.sampler
        with tempfile.TemporaryDirectory() as tmpdir:
            path = sampler.to_file(os.path.join(tmpdir, "model.pt"))
            loaded = load_sampler(path)
            assert isinstance(loaded, EntityGibbsSampler)
            assert loaded.state.assignments == sampler.state.assignments
            assert loaded.runner.steps_taken == sampler.runner.steps_taken
            for d, e in sampler.state.positions():
                assert torch.allclose(
                    loaded.state.topic_distribution(loaded.state.entities[d][e], d),
                    sampler.state.topic_distribution(sampler.state.entities[d][e], d),
                )

    def test_dump_distributions(self):
        sampler = self.__class__.sampler
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "dists.csv")
            sampler.dump_distributions(path, n_top=2)
            df = pd.read_csv(path)
        assert set(df["distribution"]) == {"token", "dep", "feat", "verb"}
        assert df.groupby(["topic", "distribution"]).size().max() == 2

    def test_print_distributions(self):
        with self.assertLogs("template_induction.modules.gibbs", level="INFO") as logs:
            self.__class__.sampler.print_distributions(n_top=3)
        assert any("*** Topic 3" in line for line in logs.output)


class TestWorkshopGibbsSampler(unittest.TestCase):
    def test_create_sampler(self):
        sampler = create_sampler(
            toy_corpus(),
            workshop=True,
            num_topics=3,
            num_templates=2,
            include_verbs=True,
            check_interval=5,
        )
        assert isinstance(sampler, WorkshopGibbsSampler)
        state = sampler.state
        assert state.num_templates == 0
        assert not state.include_verbs
        assert not state.include_entity_features
        assert not state.thetas_in_doc

        sampler.run_sampler(10)
        state.check_distributions()
        assert sampler.best_likelihood > float("-inf")

        with tempfile.TemporaryDirectory() as tmpdir:
            loaded = load_sampler(sampler.to_file(os.path.join(tmpdir, "workshop.pt")))
        assert isinstance(loaded, WorkshopGibbsSampler)
        assert loaded.state.assignments == state.assignments

    def test_full_sampler_keeps_templates(self):
        sampler = create_sampler(toy_corpus(), num_topics=4, num_templates=2)
        assert isinstance(sampler, EntityGibbsSampler)
        assert sampler.num_templates == 2

    def test_bad_structure(self):
        with self.assertRaises(ConfigurationError):
            create_sampler(toy_corpus(), num_topics=5, num_templates=2)


class TestLikelihoodTracker(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.state = ModelState(num_topics=2)
        cls.state.initialize(toy_corpus(), torch.Generator().manual_seed(0))

    def test_stops_when_stable(self):
        tracker = LikelihoodTracker(stable_min_step=10, stable_delta=1.0)
        assert not tracker.record(self.state, -100.0, 5)
        assert not tracker.record(self.state, -100.5, 11)
        assert tracker.record(self.state, -100.2, 12)

    def test_stable_only_after_min_step(self):
        tracker = LikelihoodTracker(stable_min_step=100, stable_delta=1.0)
        for step, likelihood in enumerate([-100.0, -100.1, -100.2, -100.3]):
            assert not tracker.record(self.state, likelihood, step)

    def test_stops_when_best_is_stale(self):
        tracker = LikelihoodTracker(
            stable_min_step=10 ** 6, regression_min_step=10, regression_steps_ago=5
        )
        assert not tracker.record(self.state, -50.0, 0)
        assert tracker.best.step == 0
        assert tracker.record(self.state, -60.0, 20)
        assert tracker.best_likelihood == -50.0

    def test_keeps_best_snapshot(self):
        tracker = LikelihoodTracker()
        tracker.record(self.state, -80.0, 1)
        tracker.record(self.state, -70.0, 2)
        tracker.record(self.state, -75.0, 3)
        assert tracker.best.likelihood == -70.0
        assert tracker.best.step == 2
        assert tracker.history == [-80.0, -70.0, -75.0]
        tracker.reset()
        assert tracker.best is None
