# Package internal imports
from template_induction.modules.gibbs import load_sampler

# Package external imports
import argparse
import os


def main(args):
    if args.all:
        model_names = [f for f in os.listdir(args.model_path) if f.endswith(".pt")]
        ckpts = [os.path.join(args.model_path, f) for f in model_names]
        outfiles = [
            os.path.join(args.out_path, name.rsplit(".", 1)[0] + ".csv")
            for name in model_names
        ]
    else:
        ckpts, outfiles = [args.model_path], [args.out_path]
    for ckpt, out in zip(ckpts, outfiles):
        sampler = load_sampler(ckpt)
        sampler.dump_distributions(out, n_top=args.n_top)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "model_path",
        type=str,
        help="Path to the model whose distributions are to be dumped",
    )
    parser.add_argument(
        "out_path", type=str, help="CSV file to which distributions are to be dumped"
    )
    parser.add_argument(
        "--n_top", type=int, default=25, help="Items to keep per topic and distribution"
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="If specified, process an entire directory of model checkpoints",
    )
    args = parser.parse_args()
    main(args)
