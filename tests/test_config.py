import logging

import pytest

from config import ConfigError, DecoderConfig, load_config
from decoder import LanguageModel
from logging_setup import setup_logging

from conftest import make_config


def test_missing_required_option_is_reported():
    opt = make_config()
    del opt["vocab_size"]
    with pytest.raises(ConfigError, match="vocab_size"):
        DecoderConfig.from_dict(opt)


def test_model_construction_fails_without_options():
    with pytest.raises(ConfigError):
        LanguageModel({})


@pytest.mark.parametrize("key,value", [
    ("rnn_size", 0),
    ("seq_length", -1),
    ("num_layers", 0),
    ("dropout", 1.5),
    ("beam_size", 0),
    ("beam_size", 8),  # only 7 output slots for 6 words
])
def test_invalid_values_rejected(key, value):
    with pytest.raises(ConfigError):
        DecoderConfig.from_dict(make_config(**{key: value}))


def test_unknown_keys_ignored():
    cfg = DecoderConfig.from_dict(make_config(learning_rate=0.1, idx_to_token={1: "a"}))
    assert not hasattr(cfg, "idx_to_token")
    assert cfg.vocab_size == 6
    assert cfg.num_layers == 1


def test_decode_mode():
    assert DecoderConfig.from_dict(make_config()).decode_mode == "greedy"
    assert DecoderConfig.from_dict(make_config(sample_argmax=False)).decode_mode == "sample"
    assert DecoderConfig.from_dict(make_config(beam_size=3)).decode_mode == "beam"


def test_load_config_reads_decoder_section(tmp_path):
    path = tmp_path / "decoder.yaml"
    path.write_text(
        "decoder:\n"
        "  vocab_size: 10\n"
        "  input_encoding_size: 4\n"
        "  image_vector_dim: 3\n"
        "  rnn_size: 4\n"
        "  seq_length: 5\n"
        "  beam_size: 2\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.vocab_size == 10
    assert cfg.beam_size == 2
    assert cfg.to_dict()["seq_length"] == 5


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_setup_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        setup_logging("LOUD")


def test_setup_logging_quiets_nltk():
    setup_logging("info")
    assert logging.getLogger("nltk").level == logging.WARNING
