import pytest
import torch

from decoder import LanguageModel


def make_config(**overrides):
    opt = {
        "vocab_size": 6,
        "input_encoding_size": 8,
        "image_vector_dim": 5,
        "rnn_size": 7,
        "seq_length": 6,
    }
    opt.update(overrides)
    return opt


class StubModel(LanguageModel):
    """
    LanguageModel whose step ignores the LSTM and scores the next token with
    `rule(prev_id)`; prev_id is 0 for the conditioning step. Embeddings are
    one-hot so the previous token can be read back from the input.
    """
    def __init__(self, vocab_size, seq_length, rule, **overrides):
        super().__init__(make_config(vocab_size=vocab_size, seq_length=seq_length,
                                     input_encoding_size=vocab_size + 2, **overrides))
        self.rule = rule
        self.calls = 0
        with torch.no_grad():
            self.lookup_table.weight.copy_(torch.eye(vocab_size + 2))
            self.image_encoder[0].weight.zero_()
            self.image_encoder[0].bias.zero_()

    def step(self, state, inputs, persist=True):
        assert inputs.size(0) == state.batch_size
        self.calls += 1
        is_word = inputs.abs().sum(1) > 0
        prev = torch.where(is_word, inputs.argmax(1) + 1, torch.zeros_like(is_word, dtype=torch.long))
        logits = torch.stack([self.rule(int(p)) for p in prev])
        return logits, state


def favor(token, vocab_size, strength=10.0):
    """Logits that put `strength` on one token id and 0 everywhere else."""
    logits = torch.zeros(vocab_size + 1)
    logits[token - 1] = strength
    return logits


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def model(config):
    torch.manual_seed(0)
    m = LanguageModel(config)
    m.eval()
    return m


@pytest.fixture
def vectors(config):
    torch.manual_seed(1)
    return torch.randn(4, config["image_vector_dim"])
