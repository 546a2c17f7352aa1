import argparse
import json

from scripts.setup_logging import setup_logging
from template_induction.answer_key import AnswerKey
from template_induction.corpus import load_corpus
from template_induction.exceptions import ConfigurationError
from template_induction.trainers.template_trainer import TemplateInductionTrainer
from template_induction.utils import parameter_grid

LOG = setup_logging()


def main(args):

    # Load parameters from file
    with open(args.parameters) as f:
        params = json.load(f)

    # Load data
    train_docs = load_corpus(args.train_corpus)
    test_docs = load_corpus(args.test_corpus) if args.test_corpus else None
    answer_key = AnswerKey.from_json(args.answer_key) if args.answer_key else None

    # Begin training
    for hyperparams in parameter_grid(params["hyper"]):
        for trainparams in parameter_grid(params["training"]):
            for ckpts in parameter_grid(params["checkpoints"]):
                trainer = TemplateInductionTrainer(**hyperparams)

                LOG.info("Beginning training with the following settings:")
                LOG.info(json.dumps(trainparams, indent=4))
                LOG.info("...And hyperparameters:")
                LOG.info(json.dumps(hyperparams, indent=4))

                if args.avg_runs:
                    if answer_key is None:
                        raise ConfigurationError("--avg_runs requires --answer_key")
                    for infparams in parameter_grid(params["inference"]):
                        for evalparams in parameter_grid(params["evaluation"]):
                            trainer.learn_and_infer_avg(
                                train_docs,
                                answer_key,
                                test_docs,
                                n_runs=args.avg_runs,
                                num_training_docs=args.num_training_docs,
                                **infparams,
                                **trainparams,
                                **evalparams,
                            )
                    continue

                trainer.fit(train_docs, **trainparams)
                LOG.info("Training finished.")

                if ckpts["save_ckpts"]:
                    ckpt_path = trainer.save(ckpts["ckpt_dir"], ckpts["ckpt_file_name"])
                    if ckpts.get("dump_distributions"):
                        trainer.sampler.dump_distributions(
                            ckpt_path.rsplit(".", 1)[0] + ".csv"
                        )
                    LOG.info("Complete.")

                if answer_key is None:
                    continue

                eval_docs = test_docs if test_docs is not None else train_docs
                names = [doc.name for doc in eval_docs]
                entities = [doc.entities for doc in eval_docs]
                for infparams in parameter_grid(params["inference"]):
                    for evalparams in parameter_grid(params["evaluation"]):
                        LOG.info("Evaluating with the following settings:")
                        LOG.info(json.dumps({**infparams, **evalparams}, indent=4))
                        if evalparams["strategy"] == "sampled":
                            # Labels come straight from the training sample
                            trainer.evaluate(
                                answer_key,
                                [doc.name for doc in train_docs],
                                [doc.entities for doc in train_docs],
                                **evalparams,
                            )
                        else:
                            trainer.infer(entities, **infparams)
                            trainer.evaluate(answer_key, names, entities, **evalparams)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--parameters",
        default="scripts/config/train.json",
        help="path to JSON file for model and training params",
    )
    parser.add_argument(
        "--train_corpus", required=True, help="JSON lines entity corpus to learn from"
    )
    parser.add_argument(
        "--test_corpus", help="JSON lines entity corpus to label (defaults to training)"
    )
    parser.add_argument("--answer_key", help="JSON gold templates to evaluate against")
    parser.add_argument(
        "--avg_runs",
        type=int,
        default=0,
        help="if nonzero, average this many runs on random training subsets",
    )
    parser.add_argument(
        "--num_training_docs",
        type=int,
        help="size of each averaged run's training subset",
    )
    args = parser.parse_args()
    main(args)
