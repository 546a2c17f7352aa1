import torch
import unittest

from template_induction.constants import EntityType
from template_induction.corpus import Document, Entity, Mention
from template_induction.exceptions import ConfigurationError, InvariantViolation
from template_induction.modules.model_state import COUNT_TABLES, ModelState, inverse_dep
from tests.helpers import make_entity, toy_corpus


def clone_tables(state):
    return {name: getattr(state, name).clone() for name in COUNT_TABLES}


def tables_equal(state, tables):
    return all(torch.equal(getattr(state, name), table) for name, table in tables.items())


class TestModelState(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.docs = toy_corpus()
        cls.generator = torch.Generator().manual_seed(7)

    def test_initialization_counts(self):
        docs = [
            Document("d1", [make_entity("the mayor", ["dobj--kidnap", "nsubj--escape"])]),
            Document("d2", [make_entity("the rebels", ["nsubj--kidnap"])]),
        ]
        state = ModelState(num_topics=2)
        state.initialize(docs, torch.Generator().manual_seed(0))

        zs = [z for doc in state.assignments for z in doc]
        assert len(zs) == 2, f"Expected 2 assignments, got {zs}"
        assert all(z in (0, 1) for z in zs), f"Assignments out of range: {zs}"

        # Core token once per entity, dependency once per mention
        assert state.topic_counts.sum().item() == 2
        assert state.token_totals.sum().item() == 2
        assert state.dep_totals.sum().item() == 3
        assert state.doc_topic_counts.sum(1).tolist() == [1.0, 1.0]
        for z, doc in zip(zs, range(2)):
            assert state.doc_topic_counts[doc, z].item() == 1.0

    def test_distributions_are_proper(self):
        settings = [
            dict(num_topics=4),
            dict(num_topics=4, thetas_in_doc=False),
            dict(num_topics=4, num_templates=2, include_verbs=True),
            dict(num_topics=6, num_templates=3, num_junk_templates=1, include_verbs=True),
            dict(num_topics=4, num_junk_topics=1, interpolate_features=True),
        ]
        for kwargs in settings:
            state = ModelState(**kwargs)
            state.initialize(self.docs, torch.Generator().manual_seed(1))
            state.check_distributions()
            for d in range(state.num_docs):
                prior = state.doc_topic_prior(d)
                assert abs(prior.sum().item() - 1.0) < 1e-9, f"P(topic|doc) for {kwargs}"
            enc = state.entities[0][0]
            probs = state.topic_distribution(enc, 0)
            assert abs(probs.sum().item() - 1.0) < 1e-9, f"P(topic|entity) for {kwargs}"

    def test_junk_topics_are_a_suffix(self):
        state = ModelState(num_topics=6, num_templates=3, num_junk_templates=1)
        assert state.num_junk_topics == 2
        assert [state.is_junk_topic(t) for t in range(6)] == [False] * 4 + [True] * 2
        assert state.prior_smoothing[-1].item() > state.prior_smoothing[0].item()
        assert list(state.sibling_topics(3)) == [2, 3]
        assert state.template_of(5) == 2

    def test_nested_verbs_are_shared_by_siblings(self):
        state = ModelState(num_topics=4, num_templates=2, include_verbs=True)
        state.initialize(self.docs, torch.Generator().manual_seed(2))
        nested = state.verb_dist()
        assert torch.allclose(nested[0], nested[1])
        assert torch.allclose(nested[2], nested[3])
        flat = state.verb_dist(nested=False)
        assert torch.allclose(flat.sum(1), torch.ones(4, dtype=flat.dtype))

    def test_unlabel_relabel_restores_counts(self):
        state = ModelState(num_topics=4, num_templates=2, include_verbs=True)
        state.initialize(self.docs, self.generator)
        before = clone_tables(state)
        for d, e in list(state.positions()):
            z = state.unlabel(d, e)
            assert state.assignments[d][e] == -1
            state.relabel(d, e, z)
        assert tables_equal(state, before), "Counts changed after unlabel/relabel"

    def test_unlabel_twice_raises(self):
        state = ModelState(num_topics=2)
        state.initialize(self.docs, self.generator)
        state.unlabel(0, 0)
        with self.assertRaises(InvariantViolation):
            state.unlabel(0, 0)
        state.relabel(0, 0, 1)
        with self.assertRaises(InvariantViolation):
            state.relabel(0, 0, 1)

    def test_corrupted_counts_are_detected(self):
        state = ModelState(num_topics=2)
        state.initialize(self.docs, self.generator)
        state.token_counts[0, 0] += 1.0
        with self.assertRaises(InvariantViolation):
            state.check_distributions()

    def test_bad_topic_structure(self):
        bad = [
            dict(num_topics=0),
            dict(num_topics=5, num_templates=2),
            dict(num_topics=4, num_templates=2, num_junk_templates=2),
            dict(num_topics=4, num_templates=2, num_junk_topics=1),
            dict(num_topics=3, num_junk_topics=3),
            dict(num_topics=3, num_junk_topics=-1),
        ]
        for kwargs in bad:
            with self.assertRaises(ConfigurationError, msg=f"{kwargs}"):
                ModelState(**kwargs)

    def test_entities_without_dependencies_are_skipped(self):
        no_deps = Entity([Mention("bomb", "bomb", None)])
        docs = [Document("d1", [no_deps, make_entity("the mayor", ["dobj--kidnap"])])]
        state = ModelState(num_topics=2)
        state.initialize(docs, self.generator)
        assert state.entities[0][0] is None
        assert state.assignments[0][0] == -1
        assert list(state.positions()) == [(0, 1)]
        assert state.topic_counts.sum().item() == 1

    def test_inverse_dep(self):
        assert inverse_dep("nsubj--kill") == "dobj--kill"
        assert inverse_dep("dobj--kill") == "nsubj--kill"
        assert inverse_dep("prep_in--kill") is None

    def test_inverse_dependency_penalty(self):
        victims = [make_entity(f"victim{i}", ["dobj--kill"]) for i in range(5)]
        killer = make_entity("the gunmen", ["nsubj--kill"])
        docs = [Document("d1", victims + [killer])]
        state = ModelState(
            num_topics=2, thetas_in_doc=False, include_entity_features=False
        )
        state.initialize(docs, self.generator)
        for e in range(6):
            state.unlabel(0, e)
            state.relabel(0, e, 0 if e < 5 else 1)
        state.unlabel(0, 5)
        enc = state.entities[0][5]

        state.current_iteration = 0
        early = state.topic_log_scores(enc)
        state.current_iteration = state.inverse_dep_warmup + 1
        late = state.topic_log_scores(enc)
        assert late[0].item() < early[0].item(), "Topic holding the objects was not penalized"
        assert abs(late[1].item() - early[1].item()) < 1e-12

        state.constrain_inverse_deps = False
        unconstrained = state.topic_log_scores(enc)
        assert abs(unconstrained[0].item() - early[0].item()) < 1e-12

    def test_held_out_entity(self):
        state = ModelState(num_topics=3)
        state.initialize(self.docs, self.generator)
        n_tokens = len(state.token_vocab)
        unseen = make_entity("a journalist", ["nsubj--report"], EntityType.PERSON)
        enc = state.encode_entity(unseen, grow=False)
        assert enc.token == -1
        assert enc.deps.tolist() == [-1]
        assert len(state.token_vocab) == n_tokens
        probs = state.topic_distribution(enc)
        assert abs(probs.sum().item() - 1.0) < 1e-9

    def test_snapshot_restore(self):
        state = ModelState(num_topics=3)
        state.initialize(self.docs, self.generator)
        state.current_iteration = 12
        snap = state.snapshot(-10.0, 12)
        before = clone_tables(state)
        assignments = [list(zs) for zs in state.assignments]

        z = state.unlabel(0, 0)
        state.relabel(0, 0, (z + 1) % 3)
        state.current_iteration = 40
        assert not tables_equal(state, before)

        state.restore(snap)
        assert tables_equal(state, before)
        assert state.assignments == assignments
        assert state.current_iteration == 12

    def test_state_dict_round_trip(self):
        state = ModelState(num_topics=4, num_templates=2, include_verbs=True)
        state.initialize(self.docs, self.generator)
        restored = ModelState.from_state_dict(state.state_dict())
        assert restored.assignments == state.assignments
        assert restored.token_vocab.to_list() == state.token_vocab.to_list()
        assert tables_equal(restored, clone_tables(state))
        for d, e in state.positions():
            assert torch.allclose(
                restored.topic_distribution(restored.entities[d][e], d),
                state.topic_distribution(state.entities[d][e], d),
            )

    def test_analysis(self):
        state = ModelState(num_topics=3, include_verbs=True)
        state.initialize(self.docs, self.generator)
        seen = state.count_topic_occurrences()
        assert sum(seen) == 24, f"Expected 24 entities, got {seen}"
        predicates = state.top_predicates_based_on_deps(n_deps=3)
        assert set(predicates) <= set(state.verb_vocab.to_list())
        assert len(state.top_verbs_in_topic(0, 2, 1.0)) == 2
        assert state.docname_to_index("BOMB-1") == 2
        assert state.docname_to_index("missing") == -1

    def test_scalar_probabilities_agree_with_tables(self):
        state = ModelState(num_topics=4, num_templates=2, include_verbs=True)
        state.initialize(self.docs, self.generator)
        token_dist = state.token_dist()
        dep_dist = state.dep_dist()
        verb_dist = state.verb_dist()
        prior = state.global_topic_prior()
        for topic in range(4):
            assert abs(state.prob_of_topic(topic) - prior[topic].item()) < 1e-12
            assert abs(
                state.prob_of_topic_given_doc(topic, 1) - state.doc_topic_prior(1)[topic].item()
            ) < 1e-12
            for i, token in enumerate(state.token_vocab):
                p = state.prob_of_token_given_topic(token, topic)
                assert abs(p - token_dist[topic, i].item()) < 1e-12, f"P({token}|{topic})"
            for i, dep in enumerate(state.dep_vocab):
                p = state.prob_of_dep_given_topic(dep, topic)
                assert abs(p - dep_dist[topic, i].item()) < 1e-12, f"P({dep}|{topic})"
            for i, verb in enumerate(state.verb_vocab):
                p = state.prob_of_verb_given_topic(verb, topic)
                assert abs(p - verb_dist[topic, i].item()) < 1e-12, f"P({verb}|{topic})"

            feats = {EntityType.PERSON, EntityType.LOCATION}
            joint = state.prob_of_feats_given_topic(feats, topic)
            expected = state.prob_of_feat_given_topic(
                EntityType.PERSON, topic
            ) * state.prob_of_feat_given_topic(EntityType.LOCATION, topic)
            assert abs(joint - expected) < 1e-12
        assert state.prob_of_feats_given_topic(set(), 0) == 1.0

        # Siblings share their template's top verbs
        assert state.top_verbs_in_template(0, 3, 1.0) == state.top_verbs_in_template(1, 3, 1.0)
