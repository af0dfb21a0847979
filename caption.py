# caption.py
"""Caption precomputed conditioning vectors with a trained LanguageModel."""
import argparse
import logging

import torch
from tqdm import tqdm

from config import DecoderConfig, load_config
from data_loader import get_loader, load_features
from decoder import LanguageModel
from logging_setup import setup_logging
from preprocess import Vocabulary

logger = logging.getLogger("caption")


def build_model(args) -> LanguageModel:
    config = load_config(args.config)
    overrides = {}
    if args.beam_size is not None:
        overrides["beam_size"] = args.beam_size
    if args.sample:
        overrides["sample_argmax"] = False
    if overrides:
        config = DecoderConfig.from_dict({**config.to_dict(), **overrides})
    return LanguageModel(config)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", type=str, default="configs/decoder.yaml")
    parser.add_argument("--vocab_path", type=str, default="preprocessed/vocab.pkl")
    parser.add_argument("--features", type=str, required=True, help="torch.save'd (N, D) tensor or dict with 'features'")
    parser.add_argument("--checkpoint", type=str, default=None)
    parser.add_argument("--beam_size", type=int, default=None)
    parser.add_argument("--sample", action="store_true", help="sample from the softmax instead of argmax")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--batch_size", type=int, default=64)
    parser.add_argument("--use_tqdm", action="store_true")
    parser.add_argument("--log_level", type=str, default="INFO")
    args = parser.parse_args()

    setup_logging(args.log_level)
    if args.seed is not None:
        torch.manual_seed(args.seed)
    device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    logger.info(f"Using device: {device}")

    vocab = Vocabulary.load(args.vocab_path)
    model = build_model(args)
    assert len(vocab) == model.vocab_size, \
        f"vocabulary has {len(vocab)} words but the model expects {model.vocab_size}"

    if args.checkpoint:
        ckpt = torch.load(args.checkpoint, map_location=device)
        model.load_state_dict(ckpt.get("decoder_state", ckpt))
        logger.info(f"Loaded weights from {args.checkpoint}")
    model.to(device)
    model.eval()

    features, _ = load_features(args.features)
    loader = get_loader(features, batch_size=args.batch_size)
    it = loader
    if args.use_tqdm:
        it = tqdm(loader, total=len(loader), desc="Captioning")

    index = 0
    with torch.no_grad():
        for vectors, _, _ in it:
            output = model(vectors.to(device))
            if model.beam_size is not None:
                seq, done_beams = output
            else:
                seq, done_beams = output, None
            for i, caption in enumerate(vocab.decode_sequence(seq)):
                print(f"[{index}] {caption}")
                if done_beams is not None:
                    for rank, beam in enumerate(done_beams[i]):
                        text = vocab.decode_sequence(beam.seq.unsqueeze(0))[0]
                        print(f"    {rank + 1}. {text}  (logp {beam.logp:.3f}, logppl {beam.logppl:.3f})")
                index += 1


if __name__ == "__main__":
    main()
