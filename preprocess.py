# preprocess.py
"""
Vocabulary utilities for the region caption decoder.

Provides:
- Vocabulary: word <-> id mapping. Words take ids 1..V; three control ids follow:
  START and END share V+1, NULL (padding) is V+2. Id 0 means "no token" and
  only appears in padded ground-truth captions.
  methods: build_from_coco, encode, encode_batch, decode_sequence, save, load
"""

import os
import re
import json
import logging
import pickle
from collections import Counter
from typing import Dict, Iterable, List, Optional

import nltk
import torch

logger = logging.getLogger(__name__)


class Vocabulary:
    def __init__(self, idx_to_token: Optional[Dict[int, str]] = None, freq_threshold: int = 5):
        """
        idx_to_token: optional mapping of word ids (1..V) to words.
        freq_threshold: when building from captions, minimum frequency to include a word.
        """
        self.freq_threshold = freq_threshold
        self.idx_to_token: Dict[int, str] = {}
        self.token_to_idx: Dict[str, int] = {}
        self.freqs = Counter()
        if idx_to_token:
            assert sorted(idx_to_token) == list(range(1, len(idx_to_token) + 1)), \
                "word ids must be contiguous and start at 1"
            for idx in sorted(idx_to_token):
                self.add_word(idx_to_token[idx])

    @classmethod
    def from_tokens(cls, tokens: Iterable[str]) -> "Vocabulary":
        """Vocabulary whose words take ids 1..V in the given order."""
        vocab = cls()
        for tok in tokens:
            vocab.add_word(tok)
        return vocab

    # control ids depend on the vocabulary size
    @property
    def start_index(self) -> int:
        return len(self) + 1

    @property
    def end_index(self) -> int:
        return len(self) + 1

    @property
    def null_index(self) -> int:
        return len(self) + 2

    def add_word(self, word: str):
        """Add a single word to the vocab (if not present)."""
        if word not in self.token_to_idx:
            idx = len(self.idx_to_token) + 1
            self.token_to_idx[word] = idx
            self.idx_to_token[idx] = word

    def __call__(self, word: str) -> Optional[int]:
        """Return id for word (None if missing)."""
        return self.token_to_idx.get(word)

    def __len__(self) -> int:
        return len(self.idx_to_token)

    def tokenize(self, text: str) -> List[str]:
        """Tokenize a string using NLTK (regex fallback when punkt data is not installed)."""
        try:
            tokens = nltk.tokenize.word_tokenize(text.lower())
        except LookupError:
            tokens = re.findall(r"\w+", text.lower())
        return [t for t in tokens if re.search(r"\w", t)]

    def build_from_coco(self, ann_file: str):
        """
        Count caption tokens in a COCO captions JSON file and add every word that
        meets freq_threshold, most frequent first (ties alphabetical).
        """
        assert os.path.isfile(ann_file), f"Annotation file not found: {ann_file}"
        with open(ann_file, "r", encoding="utf-8") as f:
            coco = json.load(f)

        for i, ann in enumerate(coco.get("annotations", []), 1):
            self.freqs.update(self.tokenize(ann.get("caption", "")))
            if i % 1000 == 0:
                logger.info(f"[{i}] processed captions...")

        added = 0
        for word, freq in sorted(self.freqs.items(), key=lambda kv: (-kv[1], kv[0])):
            if freq >= self.freq_threshold and word not in self.token_to_idx:
                self.add_word(word)
                added += 1
        logger.info(f"Added {added} words to vocab (threshold={self.freq_threshold}). Total vocab size: {len(self)}")

    def encode(self, caption: str, max_len: Optional[int] = None) -> List[int]:
        """
        Convert a caption string to word ids, without START/END.
        Words missing from the vocabulary are dropped.
        """
        ids = [self.token_to_idx[t] for t in self.tokenize(caption) if t in self.token_to_idx]
        if max_len is not None:
            ids = ids[:max_len]
        return ids

    def encode_batch(self, captions: List[str], seq_length: int) -> torch.Tensor:
        """Encode captions into an (N, seq_length) long tensor padded with 0."""
        out = torch.zeros(len(captions), seq_length, dtype=torch.long)
        for i, caption in enumerate(captions):
            ids = self.encode(caption, max_len=seq_length)
            if ids:
                out[i, :len(ids)] = torch.tensor(ids, dtype=torch.long)
        return out

    def decode_sequence(self, seq) -> List[str]:
        """
        Render an (N, T) batch of token ids as N space-delimited strings.
        Each caption stops at the first END token, 0, or NULL token.
        """
        if isinstance(seq, torch.Tensor):
            seq = seq.tolist()
        captions = []
        for row in seq:
            words = []
            for idx in row:
                idx = int(idx)
                if idx == self.end_index or idx == 0 or idx == self.null_index:
                    break
                words.append(self.idx_to_token[idx])
            captions.append(" ".join(words))
        return captions

    def save(self, path: str):
        """Save vocabulary object to a pickle file."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "wb") as f:
            pickle.dump({
                "idx_to_token": self.idx_to_token,
                "freqs": self.freqs,
                "freq_threshold": self.freq_threshold,
            }, f)
        logger.info(f"Saved vocabulary to {path}")

    @staticmethod
    def load(path: str) -> "Vocabulary":
        """Load a vocabulary saved with `.save()`."""
        with open(path, "rb") as f:
            data = pickle.load(f)
        vocab = Vocabulary(data["idx_to_token"], freq_threshold=data.get("freq_threshold", 5))
        vocab.freqs = data.get("freqs", Counter())
        return vocab


if __name__ == "__main__":
    # Example usage:
    # python preprocess.py --caption_path data/coco/annotations/captions_train2014.json --vocab_path preprocessed/vocab.pkl --threshold 5
    import argparse
    from logging_setup import setup_logging

    parser = argparse.ArgumentParser()
    parser.add_argument("--caption_path", type=str, help="Path to COCO captions json", required=False)
    parser.add_argument("--vocab_path", type=str, default="preprocessed/vocab.pkl", help="Where to save the vocab")
    parser.add_argument("--threshold", type=int, default=5, help="Minimum token frequency")
    args = parser.parse_args()
    setup_logging()

    if args.caption_path:
        v = Vocabulary(freq_threshold=args.threshold)
        v.build_from_coco(args.caption_path)
        v.save(args.vocab_path)
    else:
        print("No caption_path provided. This module contains the Vocabulary utilities.")
