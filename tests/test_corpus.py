import json
import os
import tempfile
import unittest

from template_induction.answer_key import (
    AnswerKey,
    get_all_gold_slots,
    remove_optionals,
    templates_containing,
)
from template_induction.constants import EntityType
from template_induction.corpus import Entity, Mention, governor_of, load_corpus
from template_induction.exceptions import ConfigurationError
from tests.helpers import gold, make_answer_key


class TestCorpus(unittest.TestCase):
    def test_core_token_skips_pronouns(self):
        entity = Entity(
            [
                Mention("he", "he", "nsubj--say"),
                Mention("Smith", "smith", "dobj--see", EntityType.PERSON, "John Smith"),
                Mention("him", "him", "dobj--arrest"),
            ]
        )
        assert entity.core_token == "smith"
        assert entity.core_token_raw == "John Smith"
        assert entity.types == {EntityType.OTHER, EntityType.PERSON}
        assert entity.deps == ["nsubj--say", "dobj--see", "dobj--arrest"]
        assert entity.num_mentions() == 3

    def test_pronoun_only_entity(self):
        entity = Entity([Mention("they", "they", "nsubj--flee")])
        assert entity.core_token == "they"

    def test_labels(self):
        entity = Entity([Mention("bomb", "bomb", "nsubj--explode")])
        assert not entity.has_a_label()
        entity.add_label(3)
        entity.add_label(3)
        assert entity.labels == {3} and entity.has_label(3)
        entity.clear_labels()
        assert not entity.has_a_label()

    def test_governor(self):
        assert governor_of("nsubj--kill") == "kill"
        assert governor_of("kill") == "kill"
        assert Mention("bomb", "bomb", "nsubj--explode").verb == "explode"
        assert Mention("bomb", "bomb", None).verb is None

    def test_load_corpus(self):
        doc = {
            "name": "dev-muc3-0001",
            "entities": [
                {
                    "mentions": [
                        {"token": "guerrillas", "dep": "nsubj--attack", "ne_type": "ORGANIZATION"}
                    ],
                    "types": ["PERSON"],
                }
            ],
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "corpus.jsonl")
            with open(path, "w") as f:
                f.write(json.dumps(doc) + "\n\n")
            docs = load_corpus(path)

            with open(path, "w") as f:
                f.write(json.dumps({"name": "broken"}) + "\n")
            with self.assertRaises(ConfigurationError):
                load_corpus(path)

            doc["entities"][0]["mentions"][0]["ne_type"] = "ANIMAL"
            with open(path, "w") as f:
                f.write(json.dumps(doc) + "\n")
            with self.assertRaises(ConfigurationError):
                load_corpus(path)

        assert len(docs) == 1 and docs[0].name == "dev-muc3-0001"
        entity = docs[0][0]
        assert entity.core_token == "guerrillas"
        assert entity.types == {EntityType.ORGANIZATION, EntityType.PERSON}


class TestAnswerKey(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.key = make_answer_key(
            {
                "DEV-MUC3-0001": [
                    ("bombing", [[gold("guerrillas")], [gold("embassy")]]),
                    ("attack / bombing", [[gold("guerrillas")], [gold("bus", optional=True)]]),
                ],
                "dev-muc3-0002": [("kidnapping", [[gold("rebels")], [gold("mayor")]])],
                "dev-muc3-0003": [],
            },
            num_slots=2,
        )

    def test_lookup(self):
        key = self.__class__.key
        assert key.num_slots() == 2
        assert len(key.get_templates("dev-muc3-0001")) == 2
        assert "DEV-MUC3-0002" in key
        assert key.get_templates("dev-muc3-0003") is None
        assert key.get_templates("dev-muc3-0004") is None
        assert key.incident_types() == ["attack / bombing", "bombing", "kidnapping"]

    def test_gold_slots(self):
        templates = self.__class__.key.get_templates("dev-muc3-0001")
        slots = get_all_gold_slots(templates, 2)
        assert slots[0] == [gold("guerrillas")], "Repeated gold entity was not merged"
        assert slots[1] == [gold("embassy"), gold("bus", optional=True)]
        assert remove_optionals(slots[1]) == [gold("embassy")]

    def test_templates_containing(self):
        templates = self.__class__.key.get_templates("dev-muc3-0001")
        assert len(templates_containing("BOMBING", templates)) == 2
        assert len(templates_containing("attack", templates)) == 1
        assert templates_containing("kidnapping", templates) is None
        assert templates_containing("bombing", None) is None

    def test_slot_count_mismatch(self):
        with self.assertRaises(ConfigurationError):
            make_answer_key({"d1": [("bombing", [[gold("guerrillas")]])]}, num_slots=2)

    def test_from_json(self):
        raw = {
            "num_slots": 2,
            "stories": {
                "d1": [
                    {
                        "incident_type": "bombing",
                        "slots": [
                            [{"mentions": ["guerrillas", "FMLN"]}],
                            [{"mentions": ["car bomb"], "optional": True}],
                        ],
                    }
                ]
            },
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "key.json")
            with open(path, "w") as f:
                json.dump(raw, f)
            key = AnswerKey.from_json(path)
            with open(path, "w") as f:
                json.dump({"stories": {}}, f)
            with self.assertRaises(ConfigurationError):
                AnswerKey.from_json(path)
        plate = key.get_templates("D1")[0]
        assert plate.slots[0][0].mentions == ("guerrillas", "FMLN")
        assert plate.slots[1][0].optional
