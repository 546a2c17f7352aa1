import argparse
import json

from scripts.setup_logging import setup_logging
from template_induction.answer_key import AnswerKey
from template_induction.constants import *
from template_induction.corpus import load_corpus
from template_induction.evaluation.slot_alignment import STRATEGIES
from template_induction.trainers.template_trainer import TemplateInductionTrainer

LOG = setup_logging()


def main(args):
    LOG.info(f"Loading model from {args.model_path}...")
    trainer = TemplateInductionTrainer.from_file(args.model_path)
    LOG.info(f"Loaded model contains {trainer.num_topics} topics")
    trainer.sampler.print_distributions()

    docs = load_corpus(args.corpus)
    names = [doc.name for doc in docs]
    entities = [doc.entities for doc in docs]

    if args.strategy != "sampled":
        LOG.info(f"Minimum acceptable probability: {args.min_prob}")
        LOG.info(f"Max entities per role: {args.max_per_role}")
        trainer.infer(
            entities,
            min_prob=args.min_prob,
            max_per_role=args.max_per_role,
            skip_poor_documents=args.skip_poor_documents,
            ignore_isolated=args.ignore_isolated,
        )

    if args.answer_key:
        answer_key = AnswerKey.from_json(args.answer_key)
        trainer.evaluate(
            answer_key,
            names,
            entities,
            strategy=args.strategy,
            evaluate_template_docs_only=args.template_docs_only,
            max_roles_per_slot=args.max_roles_per_slot,
            max_templates_to_map=args.max_templates_to_map,
            ignore_isolated=args.ignore_isolated,
        )

    if args.out_path:
        labels = {
            name: [
                {"entity": entity.core_token_raw, "labels": sorted(entity.labels)}
                for entity in doc_entities
            ]
            for name, doc_entities in zip(names, entities)
        }
        with open(args.out_path, "w") as f:
            json.dump(labels, f, indent=2)
        LOG.info(f"Wrote entity labels to {args.out_path}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("model_path", type=str, help="path to a saved sampler")
    parser.add_argument("corpus", type=str, help="JSON lines entity corpus to label")
    parser.add_argument("--answer_key", type=str, help="JSON gold templates")
    parser.add_argument(
        "--strategy",
        default="greedy",
        choices=STRATEGIES + ["sampled"],
        help="how learned roles are aligned to gold slots",
    )
    parser.add_argument("--min_prob", type=float, default=MIN_ACCEPTABLE_PROBABILITY)
    parser.add_argument("--max_per_role", type=int, default=MAX_ENTITIES_PER_ROLE)
    parser.add_argument("--max_roles_per_slot", type=int, default=None)
    parser.add_argument("--max_templates_to_map", type=int, default=1)
    parser.add_argument("--skip_poor_documents", action="store_true")
    parser.add_argument(
        "--ignore_isolated",
        action="store_true",
        help="drop labels whose template labels only one entity in a document",
    )
    parser.add_argument(
        "--template_docs_only",
        action="store_true",
        help="ignore documents without gold templates",
    )
    parser.add_argument("--out_path", type=str, help="JSON file for the entity labels")
    args = parser.parse_args()
    main(args)
