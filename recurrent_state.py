# recurrent_state.py
"""Explicit recurrent state for a stack of LSTM layers."""
from typing import Iterator, List, Sequence, Tuple, Union

import torch


class RecurrentState:
    """
    (cell, hidden) pair per stacked layer, each of shape (batch, hidden_size).

    Rows are hypotheses: batch items during greedy decoding, beams during beam
    search. The state is a value; stepping returns a new one instead of
    mutating the old.
    """

    def __init__(self, layers: Sequence[Tuple[torch.Tensor, torch.Tensor]]):
        assert len(layers) > 0, "a recurrent state needs at least one layer"
        self.layers: List[Tuple[torch.Tensor, torch.Tensor]] = list(layers)

    @classmethod
    def zeros(cls, num_layers: int, batch_size: int, hidden_size: int,
              device=None, dtype=None) -> "RecurrentState":
        def z():
            return torch.zeros(batch_size, hidden_size, device=device, dtype=dtype)
        return cls([(z(), z()) for _ in range(num_layers)])

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self) -> Iterator[Tuple[torch.Tensor, torch.Tensor]]:
        return iter(self.layers)

    @property
    def batch_size(self) -> int:
        return self.layers[0][0].size(0)

    @property
    def hidden(self) -> torch.Tensor:
        """Hidden state of the last layer, (batch, hidden_size)."""
        return self.layers[-1][1]

    def reset(self) -> "RecurrentState":
        """Zeroed state with the same shape."""
        return RecurrentState([(torch.zeros_like(c), torch.zeros_like(h)) for c, h in self.layers])

    def duplicate(self, indices: Union[torch.Tensor, Sequence[int]]) -> "RecurrentState":
        """
        Gather rows by index (repeats allowed). Used both to copy a single
        state into K beams and to reorder surviving beams after pruning.
        """
        device = self.layers[0][0].device
        idx = torch.as_tensor(indices, dtype=torch.long, device=device).view(-1)
        n = self.batch_size
        assert bool(((idx >= 0) & (idx < n)).all()), f"state index out of range for batch of {n}"
        return RecurrentState([(c.index_select(0, idx), h.index_select(0, idx)) for c, h in self.layers])
