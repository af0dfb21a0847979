# data_loader.py
"""
Batches of precomputed conditioning vectors for the caption decoder.

- FeatureCaptionDataset: yields (feature_vector, caption_ids)
- collate_fn: stacks vectors and pads captions with 0
- load_features: read a torch.save'd feature file
- get_loader: convenience to get a torch.utils.data.DataLoader
"""
import os
from typing import List, Optional, Tuple

import torch
from torch.utils.data import Dataset, DataLoader
from torch.nn.utils.rnn import pad_sequence

from preprocess import Vocabulary


class FeatureCaptionDataset(Dataset):
    def __init__(self, features: torch.Tensor, captions: Optional[List[str]] = None,
                 vocab: Optional[Vocabulary] = None, max_len: int = 16):
        assert features.dim() == 2, f"features must be (N, D), got {tuple(features.shape)}"
        if captions is not None:
            assert len(captions) == features.size(0), "features and captions are not of same length."
            assert vocab is not None, "a vocabulary is needed to encode captions"
        self.features = features
        self.captions = captions
        self.vocab = vocab
        self.max_len = max_len

    def __len__(self):
        return self.features.size(0)

    def __getitem__(self, idx) -> Tuple[torch.Tensor, torch.Tensor]:
        if self.captions is None:
            cap_ids = []
        else:
            cap_ids = self.vocab.encode(self.captions[idx], max_len=self.max_len)
        return self.features[idx], torch.tensor(cap_ids, dtype=torch.long)


def collate_fn(batch: List[Tuple[torch.Tensor, torch.Tensor]]):
    features, captions = zip(*batch)
    features = torch.stack(features, dim=0)
    lengths = torch.tensor([len(c) for c in captions], dtype=torch.long)
    captions_padded = pad_sequence(captions, batch_first=True, padding_value=0)  # null id = 0
    return features, captions_padded, lengths


def load_features(path: str):
    """
    Load conditioning vectors saved with torch.save, either a bare (N, D)
    tensor or a dict {"features": Tensor, "captions": [str, ...]}.
    Returns (features, captions or None).
    """
    assert os.path.isfile(path), f"Feature file not found: {path}"
    data = torch.load(path, map_location="cpu")
    if isinstance(data, torch.Tensor):
        return data, None
    return data["features"], data.get("captions")


def get_loader(features: torch.Tensor, captions: Optional[List[str]] = None, vocab: Optional[Vocabulary] = None,
               batch_size: int = 32, shuffle: bool = False, num_workers: int = 0, max_len: int = 16):
    dataset = FeatureCaptionDataset(features, captions, vocab, max_len=max_len)
    loader = DataLoader(dataset, batch_size=batch_size, shuffle=shuffle, num_workers=num_workers, collate_fn=collate_fn)
    return loader
