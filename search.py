# search.py
"""
Decoding loops over a LanguageModel's step function.

- sample: greedy (argmax) or multinomial decoding of a whole batch at once,
  optionally returning the hidden state at each sequence's first END token
- extract_hidden: replay given sequences and return the same end hidden states
- beam_search: K hypotheses per conditioning vector, with an N-best list of
  completed beams per item
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import torch
import torch.nn.functional as F

logger = logging.getLogger(__name__)


@dataclass
class BeamHypothesis:
    seq: torch.Tensor   # (T,) token ids, NULL after END
    logp: float         # cumulative log-probability
    logppl: float       # -logp / length, lower is better
    length: int         # words scored before END (T when unfinished)
    finished: bool = True


def _stable_topk(x: torch.Tensor, k: int, dim: int = -1):
    """Top-k along dim; equal values keep ascending index order."""
    values, indices = torch.sort(x, dim=dim, descending=True, stable=True)
    return values.narrow(dim, 0, k), indices.narrow(dim, 0, k)


def _seed(model, image_vectors: torch.Tensor):
    """Fresh state primed with the encoded conditioning vectors (output discarded)."""
    state = model.init_state(image_vectors.size(0), device=image_vectors.device)
    _, state = model.step(state, model.encode_conditioning(image_vectors))
    return state


def _capture_end_hidden(model, words, state, end_hidden, captured):
    # first END per row only
    hit = (words == model.END_TOKEN) & ~captured
    end_hidden[hit] = state.hidden[hit]
    captured |= hit


@torch.no_grad()
def sample(model, image_vectors: torch.Tensor, sample_argmax: Optional[bool] = None,
           return_hidden: bool = False, generator: Optional[torch.Generator] = None):
    """
    Decode T tokens for each of the N conditioning vectors.

    Returns an (N, T) long tensor; rows are not cut at END. With
    return_hidden=True also returns an (N, H) tensor holding the last layer's
    hidden state at the step that first emitted END (zeros if it never did).
    """
    if sample_argmax is None:
        sample_argmax = model.sample_argmax
    N, T = image_vectors.size(0), model.seq_length
    device = image_vectors.device
    seq = torch.zeros(N, T, dtype=torch.long, device=device)
    end_hidden = torch.zeros(N, model.rnn_size, device=device, dtype=model.linear.weight.dtype)
    captured = torch.zeros(N, dtype=torch.bool, device=device)

    state = _seed(model, image_vectors)
    words = torch.full((N,), model.START_TOKEN, dtype=torch.long, device=device)
    for t in range(T):
        logits, state = model.step(state, model.embed_tokens(words))
        if sample_argmax:
            idx = logits.argmax(1)
        else:
            probs = F.softmax(logits, dim=1)
            idx = torch.multinomial(probs, 1, generator=generator).view(-1)
        words = idx + 1
        seq[:, t] = words
        if return_hidden:
            _capture_end_hidden(model, words, state, end_hidden, captured)

    if return_hidden:
        return seq, end_hidden
    return seq


@torch.no_grad()
def extract_hidden(model, image_vectors: torch.Tensor, seq: torch.Tensor) -> torch.Tensor:
    """
    Feed (N, T) sequences through the model and return the (N, H) last-layer
    hidden state at each row's first END token (zeros if there is none).
    """
    N = image_vectors.size(0)
    assert N == seq.size(0), "image vectors and seq are not of same batch size."
    device = image_vectors.device
    seq = seq.to(device)
    end_hidden = torch.zeros(N, model.rnn_size, device=device, dtype=model.linear.weight.dtype)
    captured = torch.zeros(N, dtype=torch.bool, device=device)

    state = _seed(model, image_vectors)
    for t in range(seq.size(1)):
        if t == 0:
            words = torch.full((N,), model.START_TOKEN, dtype=torch.long, device=device)
        else:
            words = seq[:, t - 1].masked_fill(seq[:, t - 1] == 0, model.NULL_TOKEN)
        _, state = model.step(state, model.embed_tokens(words))
        _capture_end_hidden(model, seq[:, t], state, end_hidden, captured)
    return end_hidden


@torch.no_grad()
def beam_search(model, image_vectors: torch.Tensor, beam_size: Optional[int] = None,
                rank_by: str = "logppl"):
    """
    Beam search, one conditioning vector at a time with the beams as the batch.

    Returns (seq, done_beams): seq is (N, T) with the best hypothesis per item,
    done_beams[i] is that item's ranked list of up to K BeamHypothesis.
    rank_by="logppl" ranks by length-normalized score (ascending),
    rank_by="logp" by cumulative log-probability (descending).
    """
    K = beam_size or model.beam_size or 20
    assert rank_by in ("logppl", "logp"), f"unknown ranking {rank_by!r}"
    assert K <= model.vocab_size + 1, f"beam size {K} exceeds the {model.vocab_size + 1} output slots"
    N, T = image_vectors.size(0), model.seq_length
    logger.info(f"running beam search with beam size of {K}")

    seq = torch.full((N, T), model.NULL_TOKEN, dtype=torch.long, device=image_vectors.device)
    all_done_beams = []
    for i in range(N):
        done_beams = _beam_search_one(model, image_vectors[i:i + 1], K, rank_by)
        seq[i] = done_beams[0].seq
        all_done_beams.append(done_beams)
    return seq, all_done_beams


def _beam_search_one(model, image_vec: torch.Tensor, K: int, rank_by: str) -> List[BeamHypothesis]:
    T = model.seq_length
    END, NULL = model.END_TOKEN, model.NULL_TOKEN
    device = image_vec.device

    # conditioning vector, then START, with a batch of one
    state = _seed(model, image_vec)
    start = torch.full((1,), model.START_TOKEN, dtype=torch.long, device=device)
    logits, state = model.step(state, model.embed_tokens(start))
    beam_logprobs, idx = _stable_topk(F.log_softmax(logits, dim=1), K)
    beam_logprobs = beam_logprobs.reshape(K)

    beams = torch.full((K, T), NULL, dtype=torch.long, device=device)
    beams[:, 0] = idx.reshape(K) + 1
    state = state.duplicate([0] * K)

    done_beams = []
    for t in range(1, T):
        ended = (beams[:, :t] == END).any(1)
        logits, state = model.step(state, model.embed_tokens(beams[:, t - 1]))
        # ended beams gain no more log-probability
        logprobs = F.log_softmax(logits, dim=1).masked_fill(ended.unsqueeze(1), 0.0)
        cand_logprobs, word_idx = _stable_topk(logprobs, K)  # (K, K)
        words = word_idx + 1
        # and keep a single continuation, padded with NULL
        cand_logprobs[ended, 1:] = float("-inf")
        words[ended] = NULL

        all_logprobs = (beam_logprobs.unsqueeze(1) + cand_logprobs).view(-1)
        beam_logprobs, flat_idx = _stable_topk(all_logprobs, K)
        parents = torch.div(flat_idx, K, rounding_mode="floor")

        beams = beams.index_select(0, parents)
        beams[:, t] = words.view(-1).index_select(0, flat_idx)
        state = state.duplicate(parents)

        ended = (beams[:, :t + 1] == END).any(1)
        for k in torch.nonzero(ended & torch.isfinite(beam_logprobs)).view(-1).tolist():
            logp = beam_logprobs[k].item()
            done_beams.append(BeamHypothesis(seq=beams[k].clone(), logp=logp, logppl=-logp / t, length=t))
            # retire it; -inf never wins a later top-k
            beam_logprobs[k] = float("-inf")
        if bool(ended.all()):
            logger.debug(f"all {K} beams ended at step {t + 1} of {T}")
            break

    if len(done_beams) < K:
        done_beams.extend(_unfinished_beams(model, beams, beam_logprobs, K - len(done_beams)))

    if rank_by == "logp":
        done_beams.sort(key=lambda b: b.logp, reverse=True)
    else:
        done_beams.sort(key=lambda b: b.logppl)
    return done_beams[:K]


def _unfinished_beams(model, beams, beam_logprobs, limit) -> List[BeamHypothesis]:
    """Best still-live frontier beams, used when fewer than K beams reached END."""
    T = beams.size(1)
    order = torch.sort(beam_logprobs, descending=True, stable=True)[1].tolist()
    out = []
    for k in order:
        if len(out) == limit:
            break
        logp = beam_logprobs[k].item()
        if logp == float("-inf"):
            continue
        is_end = beams[k] == model.END_TOKEN
        if bool(is_end.any()):
            # only when T == 1 and END was the first word
            length = max(int(is_end.long().argmax().item()), 1)
        else:
            length = T
        out.append(BeamHypothesis(seq=beams[k].clone(), logp=logp, logppl=-logp / length,
                                  length=length, finished=bool(is_end.any())))
    return out
