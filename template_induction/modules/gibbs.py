import logging
import os
import time
import torch

from overrides import overrides
from template_induction.constants import *
from template_induction.corpus import Document
from template_induction.modules.model_state import ModelState
from template_induction.modules.sampler import LikelihoodTracker, Sampler
from template_induction.utils import (
    dump_topic_distributions,
    filter_init_args,
    load_checkpoint,
    save_model,
)
from torch import Tensor
from typing import Any, Dict, Iterable, List, Optional

LOG = logging.getLogger(__name__)


class GibbsRunner:
    def __init__(
        self,
        state: ModelState,
        generator: torch.Generator,
        tracker: Optional[LikelihoodTracker] = None,
        check_interval: int = CHECK_INTERVAL,
    ):
        """Collapsed Gibbs sweeps over a ModelState, with periodic
        likelihood checks and best-sample restoration

        Parameters
        ----------
        state
            the model state to sample; mutated in place
        generator
            the random number generator used for sampling
        tracker
            the likelihood tracker deciding on early stopping
        check_interval
            the number of sweeps between likelihood and invariant checks
        """
        self.state = state
        self.generator = generator
        self.tracker = tracker if tracker is not None else LikelihoodTracker()
        self.check_interval = check_interval
        self.steps_taken = 0

    def sweep(self) -> None:
        state = self.state
        for d, e in state.positions():
            state.unlabel(d, e)
            probs = state.topic_distribution(state.entities[d][e], d)
            topic = torch.multinomial(probs, 1, generator=self.generator).item()
            state.relabel(d, e, topic)

    def check(self, step: int) -> bool:
        self.state.check_distributions()
        likelihood = self.state.data_log_likelihood()
        LOG.info(f"Step {step}: data log likelihood {likelihood:.2f}")
        return self.tracker.record(self.state, likelihood, step)

    def run(self, n_iterations: int) -> ModelState:
        start_time = time.time()
        LOG.info(f"Sampling for a maximum of {n_iterations} iterations")
        step = self.steps_taken - 1
        checked = False
        for step in range(self.steps_taken, self.steps_taken + n_iterations):
            self.state.current_iteration = step
            self.sweep()
            checked = step % self.check_interval == self.check_interval - 1
            if checked and self.check(step):
                break
        self.steps_taken = step + 1

        # Runs shorter than one interval still need a recorded sample
        if not checked and step >= 0:
            self.check(step)

        best = self.tracker.best
        if best is not None:
            LOG.info(
                f"Restoring best sample from step {best.step} "
                f"(log likelihood {best.likelihood:.2f})"
            )
            self.state.restore(best)
        LOG.info(f"Sampling finished in {time.time() - start_time:.1f}s")
        return self.state


def _topic_report(state: ModelState, n_top: int) -> List[str]:
    lines = []
    token_dist = state.token_dist()
    dep_dist = state.dep_dist()
    verb_dist = state.verb_dist() if state.include_verbs else None
    feat_dist = state.feat_dist()
    seen = state.count_topic_occurrences()
    prior = state.global_topic_prior()
    tokens = state.token_vocab.to_list()
    deps = state.dep_vocab.to_list()
    verbs = state.verb_vocab.to_list()

    def top(dist: Tensor, vocab: List[str]) -> List[str]:
        if len(vocab) == 0:
            return []
        probs, idxs = torch.sort(dist, descending=True)
        return [
            f"{vocab[i]} {p:.5f}" for p, i in zip(probs.tolist()[:n_top], idxs.tolist())
        ]

    for topic in range(state.num_topics):
        junk = " (junk)" if state.is_junk_topic(topic) else ""
        lines.append(
            f"*** Topic {topic}{junk}: p(topic)={prior[topic].item():.4f} seen={seen[topic]} ***"
        )
        feats = " ".join(
            f"{t.name}={feat_dist[topic, t.value].item():.5f}" for t in EntityType
        )
        lines.append(f"  feats [ {feats} ]")
        top_tokens = top(token_dist[topic], tokens)
        top_deps = top(dep_dist[topic], deps)
        top_verbs = top(verb_dist[topic], verbs) if verb_dist is not None else []
        for i in range(len(top_tokens)):
            row = [top_tokens[i]]
            row.append(top_deps[i] if i < len(top_deps) else "")
            if top_verbs:
                row.append(top_verbs[i] if i < len(top_verbs) else "")
            lines.append("  " + "\t".join(row))
    return lines


def _distribution_tables(state: ModelState):
    distributions = {
        "token": state.token_dist(),
        "dep": state.dep_dist(),
        "feat": state.feat_dist(),
    }
    vocabularies = {
        "token": state.token_vocab.to_list(),
        "dep": state.dep_vocab.to_list(),
        "feat": [t.name for t in EntityType],
    }
    if state.include_verbs:
        distributions["verb"] = state.verb_dist()
        vocabularies["verb"] = state.verb_vocab.to_list()
    return distributions, vocabularies


def _word_distributions(state: ModelState) -> Dict[str, Dict[int, Dict[str, float]]]:
    """Every per-topic distribution as {name: {topic: {item: prob}}}"""
    distributions, vocabularies = _distribution_tables(state)
    return {
        name: {
            topic: dict(zip(vocabularies[name], dist[topic].tolist()))
            for topic in range(dist.shape[0])
        }
        for name, dist in distributions.items()
    }


def _save(kind: str, state: ModelState, extras: Dict[str, Any], path: str) -> str:
    ckpt = dict(state.state_dict(), sampler=kind, **extras)
    ckpt_dir, file_name = os.path.split(path)
    ckpt_path = save_model(ckpt, ckpt_dir, file_name)
    LOG.info(f"Saved {kind} sampler to {ckpt_path}")
    return ckpt_path


class EntityGibbsSampler(Sampler):
    def __init__(
        self,
        documents: Optional[Iterable[Document]] = None,
        num_topics: int = 10,
        num_junk_topics: int = 0,
        num_templates: int = 0,
        num_junk_templates: int = 0,
        random_seed: int = 42,
        check_interval: int = CHECK_INTERVAL,
        state: Optional[ModelState] = None,
        **hyper,
    ):
        """The full entity model: templates of roles generating each
        entity's core token, semantic types, dependency relations and
        (optionally) governing verbs

        Parameters
        ----------
        documents
            the entity corpus to initialize from; may be given later
            through initialize()
        num_topics, num_junk_topics, num_templates, num_junk_templates
            the topic structure (see ModelState)
        random_seed
            seed for initialization and sampling
        check_interval
            the number of sweeps between likelihood checks
        state
            an already initialized or restored model state
        hyper
            any other ModelState hyperparameters
        """
        self.random_seed = random_seed
        self.generator = torch.Generator().manual_seed(random_seed)
        if state is None:
            state = ModelState(
                num_topics=num_topics,
                num_junk_topics=num_junk_topics,
                num_templates=num_templates,
                num_junk_templates=num_junk_templates,
                **hyper,
            )
        self._state = state
        self.runner = GibbsRunner(state, self.generator, check_interval=check_interval)
        if documents is not None:
            self.initialize(documents)

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def num_topics(self) -> int:
        return self._state.num_topics

    @property
    def num_templates(self) -> int:
        return self._state.num_templates

    @property
    def best_likelihood(self) -> float:
        return self.runner.tracker.best_likelihood

    def initialize(self, documents: Iterable[Document]) -> None:
        self._state.initialize(documents, self.generator)
        self.runner.tracker.reset()
        self.runner.steps_taken = 0

    def unlabel(self, doc: int, pos: int) -> int:
        return self._state.unlabel(doc, pos)

    def relabel(self, doc: int, pos: int, topic: int) -> None:
        self._state.relabel(doc, pos, topic)

    def topic_distribution(self, doc: int, pos: int) -> Tensor:
        return self._state.topic_distribution(self._state.entities[doc][pos], doc)

    def compute_data_likelihood(self) -> float:
        return self._state.data_log_likelihood()

    def docname_to_index(self, name: str) -> int:
        return self._state.docname_to_index(name)

    @overrides
    def run_sampler(self, n_iterations: int) -> ModelState:
        return self.runner.run(n_iterations)

    @overrides
    def print_distributions(self, n_top: int = 25) -> None:
        for line in _topic_report(self._state, n_top):
            LOG.info(line)

    def word_distributions_per_topic(self) -> Dict[str, Dict[int, Dict[str, float]]]:
        return _word_distributions(self._state)

    def dump_distributions(self, outfile: str, n_top: int = 25):
        distributions, vocabularies = _distribution_tables(self._state)
        return dump_topic_distributions(distributions, vocabularies, outfile, n_top)

    @overrides
    def to_file(self, path: str) -> str:
        extras = {
            "random_seed": self.random_seed,
            "check_interval": self.runner.check_interval,
            "steps_taken": self.runner.steps_taken,
        }
        return _save("entity", self._state, extras, path)

    @classmethod
    def from_file(cls, path: str) -> "EntityGibbsSampler":
        ckpt = load_checkpoint(path)
        sampler = cls(
            random_seed=ckpt.get("random_seed", 42),
            check_interval=ckpt.get("check_interval", CHECK_INTERVAL),
            state=ModelState.from_state_dict(ckpt),
        )
        sampler.runner.steps_taken = ckpt.get("steps_taken", 0)
        return sampler


class WorkshopGibbsSampler(Sampler):
    def __init__(
        self,
        documents: Optional[Iterable[Document]] = None,
        num_topics: int = 10,
        num_junk_topics: int = 0,
        token_smoothing: float = TOKEN_SMOOTHING,
        dep_smoothing: float = DEP_SMOOTHING,
        topic_smoothing: float = TOPIC_SMOOTHING,
        junk_topic_smoothing: float = JUNK_TOPIC_SMOOTHING,
        random_seed: int = 42,
        check_interval: int = CHECK_INTERVAL,
        state: Optional[ModelState] = None,
    ):
        """A flat role model over core tokens and dependency relations
        only, with one global topic prior and no templates, entity
        features, verbs or inverse-dependency constraint
        """
        self.random_seed = random_seed
        self.generator = torch.Generator().manual_seed(random_seed)
        if state is None:
            state = ModelState(
                num_topics=num_topics,
                num_junk_topics=num_junk_topics,
                topic_smoothing=topic_smoothing,
                junk_topic_smoothing=junk_topic_smoothing,
                token_smoothing=token_smoothing,
                dep_smoothing=dep_smoothing,
                thetas_in_doc=False,
                include_verbs=False,
                include_entity_features=False,
                constrain_inverse_deps=False,
            )
        self._state = state
        self.runner = GibbsRunner(state, self.generator, check_interval=check_interval)
        if documents is not None:
            self._state.initialize(documents, self.generator)

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def num_topics(self) -> int:
        return self._state.num_topics

    @property
    def num_templates(self) -> int:
        return 0

    @property
    def best_likelihood(self) -> float:
        return self.runner.tracker.best_likelihood

    def docname_to_index(self, name: str) -> int:
        return self._state.docname_to_index(name)

    @overrides
    def run_sampler(self, n_iterations: int) -> ModelState:
        return self.runner.run(n_iterations)

    @overrides
    def print_distributions(self, n_top: int = 25) -> None:
        for line in _topic_report(self._state, n_top):
            LOG.info(line)

    def word_distributions_per_topic(self) -> Dict[str, Dict[int, Dict[str, float]]]:
        return _word_distributions(self._state)

    def dump_distributions(self, outfile: str, n_top: int = 25):
        distributions, vocabularies = _distribution_tables(self._state)
        return dump_topic_distributions(distributions, vocabularies, outfile, n_top)

    @overrides
    def to_file(self, path: str) -> str:
        extras = {
            "random_seed": self.random_seed,
            "check_interval": self.runner.check_interval,
            "steps_taken": self.runner.steps_taken,
        }
        return _save("workshop", self._state, extras, path)

    @classmethod
    def from_file(cls, path: str) -> "WorkshopGibbsSampler":
        ckpt = load_checkpoint(path)
        sampler = cls(
            random_seed=ckpt.get("random_seed", 42),
            check_interval=ckpt.get("check_interval", CHECK_INTERVAL),
            state=ModelState.from_state_dict(ckpt),
        )
        sampler.runner.steps_taken = ckpt.get("steps_taken", 0)
        return sampler


SAMPLERS = {"entity": EntityGibbsSampler, "workshop": WorkshopGibbsSampler}


def create_sampler(
    documents: Optional[Iterable[Document]] = None, workshop: bool = False, **hyper
) -> Sampler:
    """Builds the full or the workshop sampler from one set of hyperparameters

    Hyperparameters the chosen sampler does not take are dropped with a
    warning.
    """
    cls = WorkshopGibbsSampler if workshop else EntityGibbsSampler
    if workshop:
        accepted = filter_init_args(cls, hyper)
        ignored = sorted(set(hyper) - set(accepted))
        if ignored:
            LOG.warning(f"Workshop sampler ignores {', '.join(ignored)}")
        hyper = accepted
    return cls(documents, **hyper)


def load_sampler(path: str) -> Sampler:
    """Loads whichever sampler kind was saved at path"""
    kind = load_checkpoint(path).get("sampler", "entity")
    return SAMPLERS[kind].from_file(path)
