import logging
import torch

from collections import Counter
from template_induction.constants import *
from template_induction.corpus import Entity
from template_induction.exceptions import ConfigurationError
from template_induction.modules.model_state import ModelState
from template_induction.modules.sampler import Sampler
from typing import Dict, Iterable, List, Optional, Sequence, Set

LOG = logging.getLogger(__name__)


class Inference:
    def __init__(
        self,
        state: ModelState,
        max_entities_per_role: int = MAX_ENTITIES_PER_ROLE,
        min_acceptable_probability: float = MIN_ACCEPTABLE_PROBABILITY,
        skip_poor_documents: bool = False,
    ):
        """Labels (possibly held-out) entities with roles using a trained model

        The model's counts are only read, never changed.

        Parameters
        ----------
        state
            the trained model state
        max_entities_per_role
            the most entities any one role may label in a document
        min_acceptable_probability
            an entity is labeled only if its best role is more probable
            than this
        skip_poor_documents
            if True, a role labels nothing in a document unless one of the
            role's top verbs is a predicate of that document
        """
        self.state = state
        self.max_entities_per_role = max_entities_per_role
        self.min_acceptable_probability = min_acceptable_probability
        self.skip_poor_documents = skip_poor_documents
        if skip_poor_documents and not state.include_verbs:
            LOG.warning("skip_poor_documents has no verb distributions to consult")

    @classmethod
    def from_sampler(cls, sampler: Sampler, **kwargs) -> "Inference":
        return cls(sampler.state, **kwargs)

    def topic_log_distribution(self, entity: Entity) -> Optional[torch.Tensor]:
        """Normalized log P(topic | entity), or None if the entity has no
        usable mentions
        """
        enc = self.state.encode_entity(entity, grow=False)
        if enc is None:
            return None
        return self.state.topic_log_distribution(enc, constrain=False)

    def top_verbs_by_topic(self) -> List[List[str]]:
        return [
            self.state.top_verbs_in_topic(t, TOP_VERBS_PER_TOPIC, TOP_VERB_MIN_PROB)
            for t in range(self.state.num_topics)
        ]

    def compute_doc_likelihood(self, doc_entities: Iterable[Entity]) -> float:
        """Sum over entities of the log probability of each one's best topic"""
        likelihood = 0.0
        for entity in doc_entities:
            log_probs = self.topic_log_distribution(entity)
            if log_probs is not None:
                likelihood += log_probs.max().item()
        return likelihood

    def label_entities(self, doc_entities: Sequence[Entity]) -> None:
        """Labels one document's entities in place

        Each entity is a candidate for its single most probable topic when
        that probability exceeds the threshold; each topic then labels its
        most probable candidates, up to the per-role cap. Any existing
        labels are cleared first.

        Parameters
        ----------
        doc_entities
            the entities of a single document
        """
        candidates: Dict[int, Dict[int, float]] = {
            t: {} for t in range(self.state.num_topics)
        }
        for i, entity in enumerate(doc_entities):
            entity.clear_labels()
            log_probs = self.topic_log_distribution(entity)
            if log_probs is None:
                continue
            best_topic = int(torch.argmax(log_probs).item())
            prob = torch.exp(log_probs[best_topic]).item()
            LOG.debug(f"{entity}: best topic {best_topic} p={prob:.4f}")
            if prob > self.min_acceptable_probability:
                candidates[best_topic][i] = prob

        doc_predicates: Set[str] = set()
        top_verbs: List[List[str]] = []
        if self.skip_poor_documents:
            doc_predicates = {
                m.verb for entity in doc_entities for m in entity.mentions if m.verb
            }
            top_verbs = self.top_verbs_by_topic()

        for topic, by_entity in candidates.items():
            if self.skip_poor_documents and not doc_predicates.intersection(top_verbs[topic]):
                LOG.debug(f"Skipped topic {topic}")
                continue
            ranked = sorted(by_entity, key=lambda i: (-by_entity[i], i))
            for i in ranked[: self.max_entities_per_role]:
                doc_entities[i].add_label(topic)


def clear_entity_labels(docs_entities: Iterable[Iterable[Entity]]) -> None:
    for doc_entities in docs_entities:
        for entity in doc_entities:
            entity.clear_labels()


def remove_isolated_template_labels(
    doc_entities: Iterable[Entity], topics_per_template: int
) -> None:
    """Drops labels whose template labels only one entity in the document"""
    doc_entities = list(doc_entities)
    template_counts = Counter(
        topic // topics_per_template
        for entity in doc_entities
        for topic in entity.labels
    )
    for entity in doc_entities:
        if entity.has_a_label():
            keep = [t for t in entity.labels if template_counts[t // topics_per_template] > 1]
            entity.clear_labels()
            for topic in keep:
                entity.add_label(topic)


def label_from_sampled_state(
    sampler: Sampler,
    doc_names: Sequence[str],
    docs_entities: Sequence[Sequence[Entity]],
    cutoff: float = SAMPLED_LABEL_CUTOFF,
    ignore_isolated: bool = False,
) -> None:
    """Labels training entities straight from the sampled model

    Each entity is removed from the counts, labeled with its most
    probable topic if that topic's probability is at least cutoff, and
    returned to its sampled topic, so the model is left unchanged.

    Parameters
    ----------
    sampler
        a sampler trained on the documents being labeled
    doc_names
        the name of each document, as known to the sampler
    docs_entities
        the entities of each document, in sampling order
    cutoff
        the minimum probability of a label
    ignore_isolated
        if True, drop labels of templates seen only once in a document
    """
    state = sampler.state
    for name, doc_entities in zip(doc_names, docs_entities):
        d = state.docname_to_index(name)
        if d == -1:
            raise ConfigurationError(f"Document {name} does not exist in the sampled model")
        if len(doc_entities) != len(state.entities[d]):
            raise ConfigurationError(
                f"Document {name} has {len(doc_entities)} entities but "
                f"{len(state.entities[d])} were sampled"
            )
        for e, entity in enumerate(doc_entities):
            entity.clear_labels()
            if state.entities[d][e] is None:
                continue
            z = state.unlabel(d, e)
            probs = state.topic_distribution(state.entities[d][e], d)
            best_prob, best_topic = torch.max(probs, 0)
            if best_prob.item() >= cutoff:
                entity.add_label(int(best_topic.item()))
            state.relabel(d, e, z)

        if ignore_isolated and state.num_templates > 0:
            remove_isolated_template_labels(doc_entities, state.topics_per_template)
    LOG.info(f"Labeled {len(docs_entities)} documents from the sampled model")
