import logging
import torch

from collections import Counter
from template_induction.constants import *
from template_induction.corpus import Document, Entity, governor_of
from template_induction.exceptions import ConfigurationError, InvariantViolation
from template_induction.utils import exp_normalize, top_items
from template_induction.vocabulary import Vocabulary
from torch import LongTensor, Tensor
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set

LOG = logging.getLogger(__name__)

DTYPE = torch.float64

# Every count table that the sampler mutates
COUNT_TABLES = [
    "topic_counts",
    "doc_topic_counts",
    "token_counts",
    "token_totals",
    "dep_counts",
    "dep_totals",
    "verb_counts",
    "verb_totals",
    "feat_counts",
    "feat_totals",
]


def inverse_dep(dep: str) -> Optional[str]:
    """Swaps subject and object position: nsubj--V <-> dobj--V"""
    prefix = SUBJECT_DEP + DEP_SEPARATOR
    if dep.startswith(prefix):
        return OBJECT_DEP + DEP_SEPARATOR + dep[len(prefix) :]
    prefix = OBJECT_DEP + DEP_SEPARATOR
    if dep.startswith(prefix):
        return SUBJECT_DEP + DEP_SEPARATOR + dep[len(prefix) :]
    return None


class EncodedEntity(NamedTuple):
    """An entity's observations as vocabulary IDs (-1 where unknown)"""

    token: int
    deps: LongTensor
    inverse_deps: LongTensor
    verbs: LongTensor
    feats: Tensor

    def to_list(self) -> List[Any]:
        return [
            self.token,
            self.deps.tolist(),
            self.inverse_deps.tolist(),
            self.verbs.tolist(),
            self.feats.tolist(),
        ]

    @classmethod
    def from_list(cls, l: List[Any]) -> "EncodedEntity":
        token, deps, inverse_deps, verbs, feats = l
        return cls(
            token,
            torch.tensor(deps, dtype=torch.long),
            torch.tensor(inverse_deps, dtype=torch.long),
            torch.tensor(verbs, dtype=torch.long),
            torch.tensor(feats, dtype=DTYPE),
        )


class ModelSnapshot(NamedTuple):
    """A deep copy of every count table and assignment at one sampling step"""

    likelihood: float
    step: int
    assignments: List[List[int]]
    tables: Dict[str, Tensor]


class ModelState:
    def __init__(
        self,
        num_topics: int = 10,
        num_junk_topics: int = 0,
        num_templates: int = 0,
        num_junk_templates: int = 0,
        topic_smoothing: float = TOPIC_SMOOTHING,
        junk_topic_smoothing: float = JUNK_TOPIC_SMOOTHING,
        token_smoothing: float = TOKEN_SMOOTHING,
        dep_smoothing: float = DEP_SMOOTHING,
        verb_smoothing: float = VERB_SMOOTHING,
        feat_smoothing: float = FEAT_SMOOTHING,
        thetas_in_doc: bool = True,
        include_verbs: bool = False,
        include_entity_features: bool = True,
        interpolate_features: bool = False,
        constrain_inverse_deps: bool = True,
        inverse_dep_warmup: int = INVERSE_DEP_WARMUP,
        inverse_dep_margin: float = INVERSE_DEP_MARGIN,
        inverse_dep_penalty: float = INVERSE_DEP_PENALTY,
    ):
        """Sufficient statistics of the entity template model

        Topics (roles) are optionally grouped into templates of
        num_topics / num_templates contiguous sibling topics. The last
        num_junk_topics topics (or the topics of the last num_junk_templates
        templates) are junk and receive heavier smoothing in the prior.

        Parameters
        ----------
        num_topics
            the total number of topics (roles), junk included
        num_junk_topics
            the number of junk topics; only valid without templates
        num_templates
            the number of templates; 0 for a flat model
        num_junk_templates
            the number of junk templates
        topic_smoothing
            Dirichlet smoothing of the topic prior
        junk_topic_smoothing
            Dirichlet smoothing of the topic prior for junk topics
        token_smoothing, dep_smoothing, verb_smoothing, feat_smoothing
            additive smoothing of the per-topic distributions
        thetas_in_doc
            whether topic priors are per document or global
        include_verbs
            whether a distribution over governing verbs is modeled
        include_entity_features
            whether a distribution over entity semantic types is modeled
        interpolate_features
            whether the feature likelihood averages over an entity's "on"
            features instead of multiplying them
        constrain_inverse_deps
            whether a topic is penalized for claiming both the subject
            and object of one verb
        inverse_dep_warmup
            the sampling iteration after which the penalty applies
        inverse_dep_margin
            how much more probable the inverse relation must be
        inverse_dep_penalty
            the probability a penalized relation is given
        """
        if num_topics <= 0:
            raise ConfigurationError(f"num_topics must be positive, got {num_topics}")
        for name, value in [
            ("num_junk_topics", num_junk_topics),
            ("num_templates", num_templates),
            ("num_junk_templates", num_junk_templates),
        ]:
            if value < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {value}")
        if num_templates > 0 and num_topics % num_templates != 0:
            raise ConfigurationError(
                f"{num_topics} topics cannot be split evenly into {num_templates} templates"
            )
        if num_junk_templates > 0 and num_junk_templates >= max(num_templates, 1):
            raise ConfigurationError(
                f"{num_junk_templates} junk templates requires more than that many templates"
            )
        if num_templates > 0 and num_junk_topics > 0 and num_junk_templates == 0:
            raise ConfigurationError(
                "Junk topics must be given as junk templates when templates are used"
            )

        self.hyper = dict(
            num_topics=num_topics,
            num_junk_topics=num_junk_topics,
            num_templates=num_templates,
            num_junk_templates=num_junk_templates,
            topic_smoothing=topic_smoothing,
            junk_topic_smoothing=junk_topic_smoothing,
            token_smoothing=token_smoothing,
            dep_smoothing=dep_smoothing,
            verb_smoothing=verb_smoothing,
            feat_smoothing=feat_smoothing,
            thetas_in_doc=thetas_in_doc,
            include_verbs=include_verbs,
            include_entity_features=include_entity_features,
            interpolate_features=interpolate_features,
            constrain_inverse_deps=constrain_inverse_deps,
            inverse_dep_warmup=inverse_dep_warmup,
            inverse_dep_margin=inverse_dep_margin,
            inverse_dep_penalty=inverse_dep_penalty,
        )

        self.num_topics = num_topics
        self.num_templates = num_templates
        self.num_junk_templates = num_junk_templates
        self.topics_per_template = (
            num_topics // num_templates if num_templates > 0 else num_topics
        )
        if num_junk_templates > 0:
            self.num_junk_topics = self.topics_per_template * num_junk_templates
        else:
            self.num_junk_topics = num_junk_topics
        if self.num_junk_topics >= num_topics:
            raise ConfigurationError(
                f"{self.num_junk_topics} junk topics leaves no topics out of {num_topics}"
            )

        self.topic_smoothing = topic_smoothing
        self.junk_topic_smoothing = junk_topic_smoothing
        self.token_smoothing = token_smoothing
        self.dep_smoothing = dep_smoothing
        self.verb_smoothing = verb_smoothing
        self.feat_smoothing = feat_smoothing
        self.thetas_in_doc = thetas_in_doc
        self.include_verbs = include_verbs
        self.include_entity_features = include_entity_features
        self.interpolate_features = interpolate_features
        self.constrain_inverse_deps = constrain_inverse_deps
        self.inverse_dep_warmup = inverse_dep_warmup
        self.inverse_dep_margin = inverse_dep_margin
        self.inverse_dep_penalty = inverse_dep_penalty

        # Per-topic prior smoothing; junk topics are a suffix
        self.prior_smoothing = torch.full((num_topics,), topic_smoothing, dtype=DTYPE)
        if self.num_junk_topics > 0:
            self.prior_smoothing[num_topics - self.num_junk_topics :] = junk_topic_smoothing
        self.prior_smoothing_total = self.prior_smoothing.sum().item()

        self.token_vocab = Vocabulary()
        self.dep_vocab = Vocabulary()
        self.verb_vocab = Vocabulary()
        self.doc_names: List[str] = []
        self.entities: List[List[Optional[EncodedEntity]]] = []
        self.assignments: List[List[int]] = []
        self.current_iteration = 0
        self._allocate(0)

    def _allocate(self, n_docs: int) -> None:
        T = self.num_topics
        self.topic_counts = torch.zeros(T, dtype=DTYPE)
        self.doc_topic_counts = torch.zeros(n_docs, T, dtype=DTYPE)
        self.token_counts = torch.zeros(T, len(self.token_vocab), dtype=DTYPE)
        self.token_totals = torch.zeros(T, dtype=DTYPE)
        self.dep_counts = torch.zeros(T, len(self.dep_vocab), dtype=DTYPE)
        self.dep_totals = torch.zeros(T, dtype=DTYPE)
        self.verb_counts = torch.zeros(T, len(self.verb_vocab), dtype=DTYPE)
        self.verb_totals = torch.zeros(T, dtype=DTYPE)
        self.feat_counts = torch.zeros(T, N_ENTITY_TYPES, dtype=DTYPE)
        self.feat_totals = torch.zeros(T, dtype=DTYPE)

    # Topic structure

    @property
    def num_docs(self) -> int:
        return len(self.entities)

    def is_junk_topic(self, topic: int) -> bool:
        return topic >= self.num_topics - self.num_junk_topics

    def template_of(self, topic: int) -> int:
        return topic // self.topics_per_template

    def sibling_topics(self, topic: int) -> range:
        """The [start, end) range of topics sharing a template with topic"""
        start = topic - topic % self.topics_per_template
        return range(start, start + self.topics_per_template)

    def docname_to_index(self, name: str) -> int:
        for i, doc_name in enumerate(self.doc_names):
            if doc_name.lower() == name.lower():
                return i
        return -1

    # Initialization

    def encode_entity(self, entity: Entity, grow: bool = False) -> Optional[EncodedEntity]:
        """Maps an entity's observations to vocabulary IDs

        Mentions without a dependency relation are skipped. With grow
        set, unseen strings are added to the vocabularies; otherwise
        they are encoded as -1 and receive only smoothing mass.

        Parameters
        ----------
        entity
            the entity to encode
        grow
            whether to extend the vocabularies
        """
        lookup = (lambda v, s: v.add(s)) if grow else (lambda v, s: v.index_of(s))
        deps, inverse_deps, verbs = [], [], []
        for mention in entity.mentions:
            if not mention.dep:
                LOG.warning(f"Skipping mention {mention.token!r} with no dependency relation")
                continue
            deps.append(lookup(self.dep_vocab, mention.dep))
            inverse = inverse_dep(mention.dep)
            inverse_deps.append(-1 if inverse is None else lookup(self.dep_vocab, inverse))
            verbs.append(lookup(self.verb_vocab, governor_of(mention.dep)))
        if not deps or entity.core_token is None:
            LOG.warning(f"Skipping entity with no usable mentions: {entity}")
            return None

        feats = torch.zeros(N_ENTITY_TYPES, dtype=DTYPE)
        for t in entity.types:
            feats[t.value] = 1.0
        return EncodedEntity(
            lookup(self.token_vocab, entity.core_token),
            torch.tensor(deps, dtype=torch.long),
            torch.tensor(inverse_deps, dtype=torch.long),
            torch.tensor(verbs, dtype=torch.long),
            feats,
        )

    def initialize(
        self, documents: Iterable[Document], generator: Optional[torch.Generator] = None
    ) -> None:
        """Builds the vocabularies and assigns every entity a random topic

        Parameters
        ----------
        documents
            the entity corpus
        generator
            the random number generator for the initial assignments
        """
        documents = list(documents)
        self.doc_names = [doc.name for doc in documents]
        self.entities = [
            [self.encode_entity(e, grow=True) for e in doc.entities] for doc in documents
        ]
        self._allocate(len(documents))
        self.current_iteration = 0

        self.assignments = []
        for d, doc in enumerate(self.entities):
            zs = []
            for e, enc in enumerate(doc):
                if enc is None:
                    zs.append(-1)
                    continue
                topic = torch.randint(self.num_topics, (1,), generator=generator).item()
                self._update_counts(d, enc, topic, 1.0)
                zs.append(topic)
            self.assignments.append(zs)

        n_entities = int(self.topic_counts.sum().item())
        LOG.info(
            f"Initialized {n_entities} entities in {len(documents)} documents: "
            f"{len(self.token_vocab)} tokens, {len(self.dep_vocab)} deps, "
            f"{len(self.verb_vocab)} verbs"
        )
        self.check_distributions()

    # Count bookkeeping

    def _update_counts(self, doc: int, enc: EncodedEntity, topic: int, sign: float) -> None:
        # The core token counts once per entity; deps and verbs once per mention
        n_mentions = enc.deps.shape[0]
        self.topic_counts[topic] += sign
        self.doc_topic_counts[doc, topic] += sign
        self.token_counts[topic, enc.token] += sign
        self.token_totals[topic] += sign
        self.dep_counts[topic].index_add_(
            0, enc.deps, torch.full((n_mentions,), sign, dtype=DTYPE)
        )
        self.dep_totals[topic] += sign * n_mentions
        if self.include_verbs:
            self.verb_counts[topic].index_add_(
                0, enc.verbs, torch.full((n_mentions,), sign, dtype=DTYPE)
            )
            self.verb_totals[topic] += sign * n_mentions
        if self.include_entity_features:
            self.feat_counts[topic] += sign * enc.feats
            self.feat_totals[topic] += sign * enc.feats.sum()

    def unlabel(self, doc: int, pos: int) -> int:
        """Removes an entity's counts from its current topic and returns that topic"""
        topic = self.assignments[doc][pos]
        if topic < 0:
            raise InvariantViolation(f"Entity {pos} of document {doc} has no topic to remove")
        self._update_counts(doc, self.entities[doc][pos], topic, -1.0)
        self.assignments[doc][pos] = -1
        return topic

    def relabel(self, doc: int, pos: int, topic: int) -> None:
        """Adds an unlabeled entity's counts to a topic"""
        if self.assignments[doc][pos] >= 0:
            raise InvariantViolation(f"Entity {pos} of document {doc} already has a topic")
        self._update_counts(doc, self.entities[doc][pos], topic, 1.0)
        self.assignments[doc][pos] = topic

    def positions(self):
        """Iterates over the (document, entity) positions that are sampled"""
        for d, doc in enumerate(self.entities):
            for e, enc in enumerate(doc):
                if enc is not None:
                    yield d, e

    # Distributions

    def topic_prior(self, doc: Optional[int] = None) -> Tensor:
        """P(t), or P(t|doc) when priors are per document and doc is given"""
        if doc is None or not self.thetas_in_doc:
            return self.global_topic_prior()
        return self.doc_topic_prior(doc)

    def global_topic_prior(self) -> Tensor:
        return (self.topic_counts + self.prior_smoothing) / (
            self.topic_counts.sum() + self.prior_smoothing_total
        )

    def doc_topic_prior(self, doc: int) -> Tensor:
        counts = self.doc_topic_counts[doc]
        denom = counts.sum() + self.prior_smoothing_total
        if self.num_templates == 0:
            return (counts + self.prior_smoothing) / denom
        # P(topic|doc) = P(topic|template) * P(template|doc), uniform over siblings
        K = self.topics_per_template
        template_counts = counts.view(self.num_templates, K).sum(1)
        template_smoothing = self.prior_smoothing.view(self.num_templates, K)[:, 0] * K
        template_probs = (template_counts + template_smoothing) / denom
        return template_probs.repeat_interleave(K) / K

    def prob_of_topic(self, topic: int) -> float:
        return self.global_topic_prior()[topic].item()

    def prob_of_topic_given_doc(self, topic: int, doc: int) -> float:
        return self.doc_topic_prior(doc)[topic].item()

    def token_dist(self) -> Tensor:
        V = len(self.token_vocab)
        return (self.token_counts + self.token_smoothing) / (
            self.token_totals + self.token_smoothing * V
        ).unsqueeze(1)

    def dep_dist(self) -> Tensor:
        V = len(self.dep_vocab)
        return (self.dep_counts + self.dep_smoothing) / (
            self.dep_totals + self.dep_smoothing * V
        ).unsqueeze(1)

    def verb_dist(self, nested: Optional[bool] = None) -> Tensor:
        """Verb distributions; with templates, siblings share one distribution"""
        if nested is None:
            nested = self.num_templates > 0
        V = len(self.verb_vocab)
        counts, totals = self.verb_counts, self.verb_totals
        if nested:
            counts, totals = self._template_sum(counts), self._template_sum(totals)
        return (counts + self.verb_smoothing) / (totals + self.verb_smoothing * V).unsqueeze(1)

    def feat_dist(self) -> Tensor:
        return (self.feat_counts + self.feat_smoothing) / (
            self.feat_totals + self.feat_smoothing * N_ENTITY_TYPES
        ).unsqueeze(1)

    def _template_sum(self, t: Tensor) -> Tensor:
        # Sums over sibling topics, repeated back out to one row per topic
        K = self.topics_per_template
        shape = t.shape[1:]
        summed = t.view(self.num_templates, K, *shape).sum(1)
        return summed.repeat_interleave(K, dim=0)

    def prob_of_token_given_topic(self, token: str, topic: int) -> float:
        count = self._count_of(self.token_counts, self.token_vocab.index_of(token), topic)
        return (count + self.token_smoothing) / (
            self.token_totals[topic].item() + self.token_smoothing * len(self.token_vocab)
        )

    def prob_of_dep_given_topic(self, dep: str, topic: int) -> float:
        count = self._count_of(self.dep_counts, self.dep_vocab.index_of(dep), topic)
        return (count + self.dep_smoothing) / (
            self.dep_totals[topic].item() + self.dep_smoothing * len(self.dep_vocab)
        )

    def prob_of_verb_given_topic(self, verb: str, topic: int) -> float:
        idx = self.verb_vocab.index_of(verb)
        topics = self.sibling_topics(topic) if self.num_templates > 0 else [topic]
        count = sum(self._count_of(self.verb_counts, idx, t) for t in topics)
        total = sum(self.verb_totals[t].item() for t in topics)
        return (count + self.verb_smoothing) / (
            total + self.verb_smoothing * len(self.verb_vocab)
        )

    def prob_of_feat_given_topic(self, feat: EntityType, topic: int) -> float:
        return self.feat_dist()[topic, feat.value].item()

    def prob_of_feats_given_topic(self, feats: Set[EntityType], topic: int) -> float:
        """Joint probability of a set of "on" features (mean when interpolating)"""
        probs = [self.prob_of_feat_given_topic(f, topic) for f in feats]
        if not probs:
            return 1.0
        if self.interpolate_features:
            return sum(probs) / len(probs)
        joint = 1.0
        for p in probs:
            joint *= p
        return joint

    @staticmethod
    def _count_of(counts: Tensor, idx: int, topic: int) -> float:
        return 0.0 if idx < 0 else counts[topic, idx].item()

    @staticmethod
    def _gather(counts: Tensor, ids: LongTensor) -> Tensor:
        """Columns of a (topics x V) table; -1 IDs read as zero counts"""
        known = ids >= 0
        if counts.shape[1] == 0:
            return torch.zeros(counts.shape[0], ids.shape[0], dtype=DTYPE)
        return counts[:, ids.clamp(min=0)] * known.to(DTYPE)

    def topic_log_scores(
        self, enc: EncodedEntity, doc: Optional[int] = None, constrain: bool = True
    ) -> Tensor:
        """Unnormalized log P(topic, entity) for every topic at once

        Parameters
        ----------
        enc
            the encoded entity, whose own counts must not be in the tables
        doc
            the entity's document index, or None for a held-out entity
            (which always uses the global prior)
        constrain
            whether the inverse-dependency constraint may apply; held-out
            entities are scored without it
        """
        scores = torch.log(self.topic_prior(doc))

        # P(core token | topic)
        V = len(self.token_vocab)
        token_counts = self._gather(self.token_counts, torch.tensor([enc.token]))[:, 0]
        scores += torch.log(
            (token_counts + self.token_smoothing)
            / (self.token_totals + self.token_smoothing * V)
        )

        # P(features | topic)
        if self.include_entity_features:
            on = enc.feats > 0
            if on.any():
                feat_probs = self.feat_dist()[:, on]
                if self.interpolate_features:
                    scores += torch.log(feat_probs.mean(1))
                else:
                    scores += torch.log(feat_probs).sum(1)

        # P(dep | topic) for every mention
        Vd = len(self.dep_vocab)
        dep_denom = (self.dep_totals + self.dep_smoothing * Vd).unsqueeze(1)
        dep_probs = (self._gather(self.dep_counts, enc.deps) + self.dep_smoothing) / dep_denom
        if (
            constrain
            and self.constrain_inverse_deps
            and self.current_iteration > self.inverse_dep_warmup
        ):
            has_inverse = enc.inverse_deps >= 0
            if has_inverse.any():
                inverse_probs = (
                    self._gather(self.dep_counts, enc.inverse_deps) + self.dep_smoothing
                ) / dep_denom
                penalize = (inverse_probs > dep_probs + self.inverse_dep_margin) & has_inverse
                dep_probs = torch.where(
                    penalize,
                    torch.full_like(dep_probs, self.inverse_dep_penalty),
                    dep_probs,
                )
        scores += torch.log(dep_probs).sum(1)

        # P(verb | topic) for every mention
        if self.include_verbs:
            verb_counts = self._gather(self.verb_counts, enc.verbs)
            verb_totals = self.verb_totals
            if self.num_templates > 0:
                verb_counts = self._template_sum(verb_counts)
                verb_totals = self._template_sum(verb_totals)
            Vv = len(self.verb_vocab)
            verb_probs = (verb_counts + self.verb_smoothing) / (
                verb_totals + self.verb_smoothing * Vv
            ).unsqueeze(1)
            scores += torch.log(verb_probs).sum(1)

        return scores

    def topic_log_distribution(
        self, enc: EncodedEntity, doc: Optional[int] = None, constrain: bool = True
    ) -> Tensor:
        return exp_normalize(self.topic_log_scores(enc, doc, constrain))

    def topic_distribution(
        self, enc: EncodedEntity, doc: Optional[int] = None, constrain: bool = True
    ) -> Tensor:
        return torch.exp(self.topic_log_distribution(enc, doc, constrain))

    def data_log_likelihood(self) -> float:
        """Sum over entities of log P(current topic | everything else)"""
        likelihood = 0.0
        for d, e in self.positions():
            log_probs = self.topic_log_distribution(self.entities[d][e], d)
            likelihood += log_probs[self.assignments[d][e]].item()
        return likelihood

    # Invariants

    def check_distributions(self) -> None:
        """Raises InvariantViolation unless every distribution sums to 1"""
        for name, table, totals in [
            ("token", self.token_counts, self.token_totals),
            ("dep", self.dep_counts, self.dep_totals),
            ("verb", self.verb_counts, self.verb_totals),
            ("feat", self.feat_counts, self.feat_totals),
        ]:
            if (table < 0).any():
                raise InvariantViolation(f"Negative {name} counts")
            if not torch.allclose(table.sum(1), totals, atol=DIST_TOLERANCE, rtol=0):
                raise InvariantViolation(f"{name} totals disagree with {name} counts")

        dists = [
            ("token", self.token_dist(), len(self.token_vocab)),
            ("dep", self.dep_dist(), len(self.dep_vocab)),
            ("verb", self.verb_dist(), len(self.verb_vocab)),
            ("feat", self.feat_dist(), N_ENTITY_TYPES),
        ]
        for name, dist, support in dists:
            if support == 0:
                continue
            sums = dist.sum(1)
            bad = (sums - 1.0).abs() > DIST_TOLERANCE
            if bad.any():
                topic = int(bad.nonzero()[0].item())
                raise InvariantViolation(
                    f"P({name}|topic={topic}) sums to {sums[topic].item()}"
                )
        self.check_topic_distributions()

    def check_topic_distributions(self) -> None:
        priors = [("P(topic)", self.global_topic_prior())]
        for d in range(self.num_docs):
            priors.append((f"P(topic|doc={d})", self.doc_topic_prior(d)))
        for name, prior in priors:
            total = prior.sum().item()
            if abs(total - 1.0) > DIST_TOLERANCE:
                raise InvariantViolation(f"{name} sums to {total}")

    # Snapshots

    def snapshot(self, likelihood: float, step: int) -> ModelSnapshot:
        return ModelSnapshot(
            likelihood,
            step,
            [list(zs) for zs in self.assignments],
            {name: getattr(self, name).clone() for name in COUNT_TABLES},
        )

    def restore(self, snapshot: ModelSnapshot) -> None:
        self.assignments = [list(zs) for zs in snapshot.assignments]
        for name, table in snapshot.tables.items():
            setattr(self, name, table.clone())
        self.current_iteration = snapshot.step

    # Analysis

    def count_topic_occurrences(self) -> List[int]:
        counts = Counter(z for zs in self.assignments for z in zs if z >= 0)
        return [counts[t] for t in range(self.num_topics)]

    def top_predicates_based_on_deps(self, n_deps: int = 5) -> List[str]:
        """Predicates ranked by the summed probability of their relations
        among each topic's top dependencies
        """
        if len(self.dep_vocab) == 0:
            return []
        sums = Counter()
        deps = self.dep_vocab.to_list()
        for topic_dist in self.dep_dist():
            probs, idxs = torch.sort(topic_dist, descending=True)
            for p, i in zip(probs.tolist()[:n_deps], idxs.tolist()[:n_deps]):
                sums[governor_of(deps[i])] += p
        return [pred for pred, _ in sums.most_common()]

    def top_verbs_in_topic(self, topic: int, n: int, min_prob: float) -> List[str]:
        dist = self.verb_dist(nested=False)[topic]
        return top_items(dist, self.verb_vocab.to_list(), n, min_prob)

    def top_verbs_in_template(self, topic: int, n: int, min_prob: float) -> List[str]:
        if self.num_templates == 0:
            return self.top_verbs_in_topic(topic, n, min_prob)
        dist = self.verb_dist(nested=True)[topic]
        return top_items(dist, self.verb_vocab.to_list(), n, min_prob)

    # Persistence

    def state_dict(self) -> Dict[str, Any]:
        d = {
            "curr_hyper": dict(self.hyper),
            "token_vocab": self.token_vocab.to_list(),
            "dep_vocab": self.dep_vocab.to_list(),
            "verb_vocab": self.verb_vocab.to_list(),
            "doc_names": list(self.doc_names),
            "entities": [
                [None if enc is None else enc.to_list() for enc in doc]
                for doc in self.entities
            ],
            "assignments": [list(zs) for zs in self.assignments],
            "current_iteration": self.current_iteration,
        }
        for name in COUNT_TABLES:
            d[name] = getattr(self, name).clone()
        return d

    @classmethod
    def from_state_dict(cls, d: Dict[str, Any]) -> "ModelState":
        state = cls(**d["curr_hyper"])
        state.token_vocab = Vocabulary(d["token_vocab"])
        state.dep_vocab = Vocabulary(d["dep_vocab"])
        state.verb_vocab = Vocabulary(d["verb_vocab"])
        state.doc_names = list(d["doc_names"])
        state.entities = [
            [None if enc is None else EncodedEntity.from_list(enc) for enc in doc]
            for doc in d["entities"]
        ]
        state.assignments = [list(zs) for zs in d["assignments"]]
        state.current_iteration = d["current_iteration"]
        for name in COUNT_TABLES:
            setattr(state, name, d[name].to(DTYPE).clone())
        return state
