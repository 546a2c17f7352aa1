import logging
import os
import numpy as np
import torch

from template_induction.answer_key import AnswerKey
from template_induction.constants import *
from template_induction.corpus import Document, Entity
from template_induction.evaluation.matching import PRF1
from template_induction.evaluation.slot_alignment import SlotAlignmentEvaluator
from template_induction.exceptions import ConfigurationError
from template_induction.modules.gibbs import WorkshopGibbsSampler, create_sampler, load_sampler
from template_induction.modules.inference import (
    Inference,
    clear_entity_labels,
    label_from_sampled_state,
    remove_isolated_template_labels,
)
from template_induction.modules.sampler import Sampler
from template_induction.utils import checkpoint_name
from typing import Optional, Sequence

LOG = logging.getLogger(__name__)


class TemplateInductionTrainer:
    def __init__(
        self,
        num_topics: int = 10,
        num_junk_topics: int = 0,
        num_templates: int = 0,
        num_junk_templates: int = 0,
        workshop: bool = False,
        sampler: Optional[Sampler] = None,
        random_seed: int = 42,
        **hyper,
    ):
        """Learns role distributions, labels documents with them and scores
        the labels against an answer key

        Parameters
        ----------
        num_topics, num_junk_topics, num_templates, num_junk_templates
            the topic structure of every sampler this trainer builds
        workshop
            whether to use the flat workshop sampler
        sampler
            an already trained sampler, e.g. one loaded from disk
        random_seed
            seed for torch, numpy and the sampler
        hyper
            any other sampler hyperparameters
        """
        self.num_topics = num_topics
        self.num_junk_topics = num_junk_topics
        self.num_templates = num_templates
        self.num_junk_templates = num_junk_templates
        self.workshop = workshop
        self.random_seed = random_seed
        self.hyper = hyper
        self.sampler = sampler

        torch.manual_seed(self.random_seed)
        np.random.seed(self.random_seed)

    @classmethod
    def from_file(cls, path: str) -> "TemplateInductionTrainer":
        sampler = load_sampler(path)
        state = sampler.state
        return cls(
            num_topics=state.num_topics,
            num_junk_topics=state.num_junk_topics if state.num_junk_templates == 0 else 0,
            num_templates=state.num_templates,
            num_junk_templates=state.num_junk_templates,
            workshop=isinstance(sampler, WorkshopGibbsSampler),
            sampler=sampler,
            random_seed=getattr(sampler, "random_seed", 42),
        )

    def _require_sampler(self) -> Sampler:
        if self.sampler is None:
            raise ConfigurationError("The trainer has no model; call fit() or load one first")
        return self.sampler

    def create_sampler(self, documents: Sequence[Document]) -> Sampler:
        hyper = dict(
            self.hyper,
            num_topics=self.num_topics,
            num_junk_topics=self.num_junk_topics,
            random_seed=self.random_seed,
        )
        if not self.workshop:
            hyper.update(
                num_templates=self.num_templates, num_junk_templates=self.num_junk_templates
            )
        return create_sampler(documents, workshop=self.workshop, **hyper)

    def fit(self, documents: Sequence[Document], n_iterations: int = 1000) -> Sampler:
        LOG.info(
            f"Learning {self.num_topics} topics in {self.num_templates} templates "
            f"from {len(documents)} documents"
        )
        self.sampler = self.create_sampler(documents)
        self.sampler.run_sampler(n_iterations)
        self.sampler.print_distributions()
        return self.sampler

    def infer(
        self,
        docs_entities: Sequence[Sequence[Entity]],
        min_prob: float = MIN_ACCEPTABLE_PROBABILITY,
        max_per_role: int = MAX_ENTITIES_PER_ROLE,
        skip_poor_documents: bool = False,
        ignore_isolated: bool = False,
    ) -> None:
        """Labels every document's entities in place with the trained model"""
        sampler = self._require_sampler()
        inference = Inference(
            sampler.state,
            max_entities_per_role=max_per_role,
            min_acceptable_probability=min_prob,
            skip_poor_documents=skip_poor_documents,
        )
        clear_entity_labels(docs_entities)
        for doc_entities in docs_entities:
            inference.label_entities(doc_entities)
            if ignore_isolated and sampler.state.num_templates > 0:
                remove_isolated_template_labels(
                    doc_entities, sampler.state.topics_per_template
                )
        LOG.info(f"Labeled {len(docs_entities)} documents")

    def evaluate(
        self,
        answer_key: AnswerKey,
        doc_names: Sequence[str],
        docs_entities: Sequence[Sequence[Entity]],
        strategy: str = "greedy",
        evaluate_template_docs_only: bool = False,
        max_roles_per_slot: Optional[int] = None,
        max_templates_to_map: int = 1,
        num_filled: Optional[int] = None,
        max_permutations: int = MAX_PERMUTATIONS,
        cutoff: float = SAMPLED_LABEL_CUTOFF,
        ignore_isolated: bool = False,
    ) -> PRF1:
        """Scores the current entity labels against the answer key

        With the "sampled" strategy, the documents must be training
        documents: they are first labeled from the sampled model, then
        aligned with the single-role strategy (flat models) or the schema
        strategy (models with templates).
        """
        sampler = self._require_sampler()
        state = sampler.state
        evaluator = SlotAlignmentEvaluator(
            state.num_topics,
            answer_key,
            evaluate_template_docs_only=evaluate_template_docs_only,
            max_permutations=max_permutations,
        )

        if strategy == "sampled":
            label_from_sampled_state(
                sampler, doc_names, docs_entities, cutoff, ignore_isolated=ignore_isolated
            )
            strategy = "single_role" if state.num_templates == 0 else "schema"

        evaluator.set_guesses(doc_names, docs_entities)
        prf1 = evaluator.evaluate(
            strategy,
            max_roles_per_slot=max_roles_per_slot,
            num_templates=state.num_templates,
            max_templates_to_map=max_templates_to_map,
            num_filled=num_filled,
        )
        LOG.info(
            f"Results ({strategy}): p={prf1.precision:.3f} r={prf1.recall:.3f} f1={prf1.f1:.3f}"
        )
        return prf1

    def learn_and_infer_avg(
        self,
        train_documents: Sequence[Document],
        answer_key: AnswerKey,
        test_documents: Optional[Sequence[Document]] = None,
        n_runs: int = 5,
        num_training_docs: Optional[int] = None,
        n_iterations: int = 1000,
        strategy: str = "greedy",
        min_prob: float = MIN_ACCEPTABLE_PROBABILITY,
        max_per_role: int = MAX_ENTITIES_PER_ROLE,
        skip_poor_documents: bool = False,
        ignore_isolated: bool = False,
        **eval_kwargs,
    ) -> PRF1:
        """Averages precision, recall and F1 over several runs, each trained
        on a random subset of the training documents

        Runs whose score is NaN are left out of the average.

        Parameters
        ----------
        train_documents
            the pool of training documents
        answer_key
            the gold templates
        test_documents
            the documents to label and score; the training pool if None.
            With the "sampled" strategy they are added to every run's
            training set
        n_runs
            the number of runs
        num_training_docs
            the size of each run's training subset; all documents if None
        n_iterations
            the number of sweeps in each run
        strategy
            the alignment strategy (see evaluate)
        min_prob, max_per_role, skip_poor_documents, ignore_isolated
            the labeling settings (see infer); ignore_isolated also applies
            to the "sampled" strategy
        """
        if test_documents is None:
            test_documents = train_documents
        if num_training_docs is None or num_training_docs > len(train_documents):
            num_training_docs = len(train_documents)
        test_names = [doc.name for doc in test_documents]

        scores = []
        for run in range(n_runs):
            LOG.info(f"Learn and infer run {run}")
            idxs = np.random.permutation(len(train_documents))[:num_training_docs]
            run_docs = [train_documents[i] for i in sorted(idxs)]
            if strategy == "sampled":
                seen = {doc.name.lower() for doc in run_docs}
                run_docs += [doc for doc in test_documents if doc.name.lower() not in seen]
            clear_entity_labels(run_docs)
            clear_entity_labels(test_documents)

            self.fit(run_docs, n_iterations)
            test_entities = [doc.entities for doc in test_documents]
            if strategy != "sampled":
                self.infer(
                    test_entities,
                    min_prob=min_prob,
                    max_per_role=max_per_role,
                    skip_poor_documents=skip_poor_documents,
                    ignore_isolated=ignore_isolated,
                )
            prf1 = self.evaluate(
                answer_key,
                test_names,
                test_entities,
                strategy,
                ignore_isolated=ignore_isolated,
                **eval_kwargs,
            )
            LOG.info(
                f"run {run}: p={prf1.precision:.3f} r={prf1.recall:.3f} f1={prf1.f1:.2f}"
            )
            scores.append(list(prf1))

        avg = np.nanmean(np.array(scores, dtype=float), axis=0)
        result = PRF1(*[float(x) for x in avg])
        LOG.info(
            f"Average over {n_runs} runs: p={result.precision:.3f} "
            f"r={result.recall:.3f} f1={result.f1:.3f}"
        )
        return result

    def save(self, ckpt_dir: str, root: str = "model") -> str:
        sampler = self._require_sampler()
        state = sampler.state
        junk_topics = state.num_junk_topics if state.num_junk_templates == 0 else 0
        file_name = checkpoint_name(
            root, state.num_templates, state.num_topics, state.num_junk_templates, junk_topics
        )
        return sampler.to_file(os.path.join(ckpt_dir, file_name))
