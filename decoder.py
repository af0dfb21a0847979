# decoder.py
from typing import Dict, Union

import torch
import torch.nn as nn

from config import DecoderConfig
from recurrent_state import RecurrentState
from search import beam_search, sample


class LanguageModel(nn.Module):
    """
    Stacked-LSTM caption decoder conditioned on one feature vector per caption.

    Token ids: words are 1..V, START and END share V+1, NULL (padding) is V+2.
    Embedding row k-1 holds token k; logits column j scores token j+1, so the
    output has V+1 columns with the last one shared by START/END.
    """
    def __init__(self, config: Union[DecoderConfig, Dict]):
        super().__init__()
        if not isinstance(config, DecoderConfig):
            config = DecoderConfig.from_dict(config)
        self.config = config
        V, W, D, H = config.vocab_size, config.input_encoding_size, config.image_vector_dim, config.rnn_size
        self.vocab_size = V
        self.image_vector_dim = D
        self.rnn_size = H
        self.seq_length = config.seq_length
        self.num_layers = config.num_layers
        self.beam_size = config.beam_size
        self.sample_argmax = config.sample_argmax

        self.START_TOKEN = V + 1
        self.END_TOKEN = V + 1
        self.NULL_TOKEN = V + 2

        # conditioning vector -> "virtual first word"
        self.image_encoder = nn.Sequential(nn.Linear(D, W), nn.ReLU())
        self.lookup_table = nn.Embedding(V + 2, W)
        self.lstm_layers = nn.ModuleList(
            nn.LSTM(W if i == 0 else H, H, batch_first=True) for i in range(config.num_layers)
        )
        self.dropout = nn.Dropout(config.dropout)
        self.linear = nn.Linear(H, V + 1)
        self.criterion = nn.CrossEntropyLoss(ignore_index=-1)

        self._forward_sampled = False

    def encode_conditioning(self, image_vectors: torch.Tensor) -> torch.Tensor:
        """(N, D) conditioning vectors -> (N, W) embeddings."""
        assert image_vectors.dim() == 2 and image_vectors.size(1) == self.image_vector_dim, \
            f"expected conditioning vectors of shape (N, {self.image_vector_dim}), got {tuple(image_vectors.shape)}"
        return self.image_encoder(image_vectors)

    def embed_tokens(self, ids: torch.Tensor) -> torch.Tensor:
        assert bool(((ids >= 1) & (ids <= self.NULL_TOKEN)).all()), \
            f"token ids must be in 1..{self.NULL_TOKEN}"
        return self.lookup_table(ids - 1)

    def project_to_logits(self, hidden: torch.Tensor) -> torch.Tensor:
        return self.linear(hidden)

    def init_state(self, batch_size: int, device=None, dtype=None) -> RecurrentState:
        if dtype is None:
            dtype = self.linear.weight.dtype
        if device is None:
            device = self.linear.weight.device
        return RecurrentState.zeros(self.num_layers, batch_size, self.rnn_size, device=device, dtype=dtype)

    def step(self, state: RecurrentState, inputs: torch.Tensor, persist: bool = True):
        """
        Advance every layer by one timestep.

        inputs: (B, W) embeddings, one per row of `state`.
        Returns (B, V+1) logits and the next state. With persist=False the
        returned state is zeroed, so the next call starts fresh.
        """
        assert inputs.size(0) == state.batch_size, \
            f"input batch {inputs.size(0)} does not match state batch {state.batch_size}"
        x = inputs.unsqueeze(1)
        layers = []
        for lstm, (c, h) in zip(self.lstm_layers, state):
            x, (h_n, c_n) = lstm(x, (h.unsqueeze(0).contiguous(), c.unsqueeze(0).contiguous()))
            x = self.dropout(x)
            layers.append((c_n.squeeze(0), h_n.squeeze(0)))
        logits = self.project_to_logits(x.squeeze(1))
        next_state = RecurrentState(layers)
        if not persist:
            next_state = next_state.reset()
        return logits, next_state

    def _run_layers(self, inputs: torch.Tensor) -> torch.Tensor:
        x = inputs
        for lstm in self.lstm_layers:
            x, _ = lstm(x)
            x = self.dropout(x)
        return x

    def forward(self, image_vectors, gt_sequence=None):
        """
        With a ground-truth sequence (N, T), ids in 0..V where 0 is null:
        returns (N, T+2, V+1) logits for [conditioning, START, gt...].
        Without one: decodes, with beam search when beam_size is set.
        """
        if gt_sequence is not None and gt_sequence.numel() > 0:
            N, T = gt_sequence.shape
            assert image_vectors.size(0) == N, "image vectors and gt sequence are not of same batch size."
            assert bool(((gt_sequence >= 0) & (gt_sequence <= self.vocab_size)).all()), \
                f"ground-truth ids must be in 0..{self.vocab_size}"
            gt_with_start = gt_sequence.new_full((N, T + 1), self.START_TOKEN)
            gt_with_start[:, 1:] = gt_sequence
            gt_with_start[gt_with_start == 0] = self.NULL_TOKEN

            inputs = torch.cat([
                self.encode_conditioning(image_vectors).unsqueeze(1),
                self.embed_tokens(gt_with_start),
            ], 1)
            self._forward_sampled = False
            return self.project_to_logits(self._run_layers(inputs))

        self._forward_sampled = True
        if self.beam_size is not None:
            return beam_search(self, image_vectors, self.beam_size)
        return sample(self, image_vectors)

    def get_target(self, gt_sequence: torch.Tensor) -> torch.Tensor:
        """
        (N, T) ground truth -> (N, T+2) target: column 0 is null, the gt follows,
        and the first null after it becomes END.
        """
        N, T = gt_sequence.shape
        target = torch.zeros(N, T + 2, dtype=torch.long, device=gt_sequence.device)
        target[:, 1:T + 1] = gt_sequence
        # column T+1 is always null, so every row has a first null
        first_null = (target[:, 1:] == 0).long().argmax(1) + 1
        target[torch.arange(N, device=target.device), first_null] = self.END_TOKEN
        return target

    def loss(self, logits: torch.Tensor, gt_sequence: torch.Tensor) -> torch.Tensor:
        """Cross-entropy of teacher-forced logits against get_target(gt_sequence)."""
        if self._forward_sampled:
            raise RuntimeError("cannot backprop through sampling")
        target = self.get_target(gt_sequence).to(logits.device)
        # token k is class k-1; null targets become -1 and are ignored
        return self.criterion(logits.reshape(-1, self.vocab_size + 1), (target - 1).reshape(-1))
