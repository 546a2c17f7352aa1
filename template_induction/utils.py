import inspect
import os
import pandas as pd
import torch

from itertools import product
from typing import Any, Dict, List, Sequence


def exp_normalize(t: torch.Tensor, dim=None) -> torch.Tensor:
    """Normalizes a tensor of log values using the exp-normalize trick:
       https://timvieira.github.io/blog/post/2014/02/11/exp-normalize-trick/

    The result is still in log space.
    """
    if dim is not None:
        t2 = torch.exp(t - t.max(dim, keepdim=True).values)
        return torch.log(t2 / t2.sum(dim, keepdim=True))
    else:
        t2 = torch.exp(t - t.max())
        return torch.log(t2 / t2.sum())


def parameter_grid(param_dict: Dict[str, Any]):
    """Generator for training hyperparameter grid

    Parameters
    ----------
    param_dict
        Dictionary containing the hyperparameters and their possible values
    """
    ks = list(param_dict.keys())
    vlists = []
    for k, v in param_dict.items():
        if isinstance(v, dict):
            vlists.append(parameter_grid(v))
        elif isinstance(v, list):
            vlists.append(v)
        else:
            errmsg = (
                "param_dict must be a dictionary contining lists or "
                "recursively other param_dicts"
            )
            raise ValueError(errmsg)
    for configuration in product(*vlists):
        yield dict(zip(ks, configuration))


def filter_init_args(cls, initargs: Dict[str, Any]) -> Dict[str, Any]:
    """Keeps only the arguments accepted by a class's constructor"""
    filtered_args = {}
    for p in inspect.signature(cls.__init__).parameters:
        if p in initargs:
            filtered_args[p] = initargs[p]
    return filtered_args


def save_model(data_dict, ckpt_dir, file_name):
    if ckpt_dir and not os.path.isdir(ckpt_dir):
        os.makedirs(ckpt_dir)
    ckpt_path = os.path.join(ckpt_dir, file_name)
    torch.save(data_dict, ckpt_path)
    return ckpt_path


def load_checkpoint(ckpt_path: str) -> Dict[str, Any]:
    return torch.load(ckpt_path, map_location="cpu")


def checkpoint_name(
    root: str,
    num_templates: int,
    num_topics: int,
    num_junk_templates: int,
    num_junk_topics: int,
) -> str:
    """Informative model file name based on the topic structure"""
    return "-".join(
        [
            root,
            "plates" + str(num_templates),
            "topics" + str(num_topics),
            "jp" + str(num_junk_templates),
            "jt" + str(num_junk_topics),
        ]
    ) + ".pt"


def top_items(
    dist: torch.Tensor, vocab: Sequence[str], n: int, min_prob: float = 1.0
) -> List[str]:
    """The n most probable items of a distribution, followed by any
    others whose probability is at least min_prob
    """
    probs, idxs = torch.sort(dist, descending=True)
    top = []
    for rank, (p, i) in enumerate(zip(probs.tolist(), idxs.tolist())):
        if rank >= n and p < min_prob:
            break
        top.append(vocab[i])
    return top


def dump_topic_distributions(
    distributions: Dict[str, torch.Tensor],
    vocabularies: Dict[str, Sequence[str]],
    outfile: str,
    n_top: int = 25,
) -> pd.DataFrame:
    """Writes the top items of each per-topic distribution to a CSV

    One row per (topic, distribution, rank).

    Parameters
    ----------
    distributions
        maps a distribution name (e.g. "token") to a (topics x support) tensor
    vocabularies
        maps the same names to the strings labeling the support
    outfile
        the CSV file to write
    n_top
        how many items to keep per topic and distribution
    """
    rows = []
    for name, dist in distributions.items():
        vocab = vocabularies[name]
        for topic in range(dist.shape[0]):
            probs, idxs = torch.sort(dist[topic], descending=True)
            for rank, (p, i) in enumerate(zip(probs.tolist(), idxs.tolist())):
                if rank == n_top:
                    break
                rows.append(
                    {
                        "topic": topic,
                        "distribution": name,
                        "rank": rank,
                        "item": vocab[i],
                        "prob": p,
                    }
                )
    df = pd.DataFrame(rows, columns=["topic", "distribution", "rank", "item", "prob"])
    df.to_csv(outfile, index=False)
    return df
