from template_induction.answer_key import AnswerKey, GoldEntity, GoldTemplate
from template_induction.constants import EntityType
from template_induction.corpus import Document, Entity, Mention


def make_entity(text, deps, ne_type=EntityType.OTHER):
    """An entity whose mentions all share one head token"""
    token = text.split()[-1]
    return Entity(
        [Mention(token, token.lower(), dep, ne_type, text) for dep in deps]
    )


def make_labeled_entity(text, *labels):
    entity = make_entity(text, ["nsubj--say"])
    for label in labels:
        entity.add_label(label)
    return entity


def gold(*mentions, optional=False):
    return GoldEntity(tuple(mentions), optional)


def make_answer_key(stories, num_slots):
    """stories maps a name to a list of (incident type, [slot golds]) pairs"""
    return AnswerKey(
        {
            name: [
                GoldTemplate(incident_type, tuple(tuple(slot) for slot in slots))
                for incident_type, slots in plates
            ]
            for name, plates in stories.items()
        },
        num_slots,
    )


def toy_corpus():
    """Two kinds of documents: bombings with perpetrators and targets,
    kidnappings with kidnappers and victims
    """
    org, loc, per = EntityType.ORGANIZATION, EntityType.LOCATION, EntityType.PERSON
    docs = []
    for i in range(4):
        bombers = make_entity("the guerrillas", ["nsubj--bomb", "nsubj--attack"], org)
        target = make_entity("the embassy", ["dobj--bomb", "nsubj--collapse"], loc)
        police = make_entity("police", ["nsubj--say"], org)
        docs.append(Document(f"bomb-{i}", [bombers, target, police]))

        kidnappers = make_entity("the rebels", ["nsubj--kidnap"], org)
        victim = make_entity("the mayor", ["dobj--kidnap", "nsubj--escape"], per)
        when = make_entity("yesterday", ["tmod--kidnap"], EntityType.TIME)
        docs.append(Document(f"kidnap-{i}", [kidnappers, victim, when]))
    return docs
