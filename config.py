# config.py
"""
Decoder configuration.

Provides:
- ConfigError: raised for missing or invalid options
- DecoderConfig: sizes, horizon and decode mode for a LanguageModel
- load_config(path): read a DecoderConfig from a YAML file
"""
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("vocab_size", "input_encoding_size", "image_vector_dim", "rnn_size", "seq_length")


class ConfigError(ValueError):
    """A required option is missing or has an unusable value."""


@dataclass
class DecoderConfig:
    vocab_size: int
    input_encoding_size: int
    image_vector_dim: int
    rnn_size: int
    seq_length: int
    num_layers: int = 1
    dropout: float = 0.0
    beam_size: Optional[int] = None
    sample_argmax: bool = True

    def __post_init__(self):
        for key in REQUIRED_KEYS + ("num_layers",):
            value = getattr(self, key)
            if not isinstance(value, int) or value <= 0:
                raise ConfigError(f"'{key}' must be a positive integer, got {value!r}")
        if self.dropout < 0 or self.dropout >= 1:
            raise ConfigError(f"'dropout' must be in [0, 1), got {self.dropout!r}")
        if self.beam_size is not None:
            if not isinstance(self.beam_size, int) or self.beam_size < 1:
                raise ConfigError(f"'beam_size' must be a positive integer, got {self.beam_size!r}")
            if self.beam_size > self.vocab_size + 1:
                raise ConfigError(f"'beam_size' ({self.beam_size}) exceeds the {self.vocab_size + 1} output slots")

    @property
    def decode_mode(self) -> str:
        if self.beam_size is not None:
            return "beam"
        return "greedy" if self.sample_argmax else "sample"

    @classmethod
    def from_dict(cls, opt: Dict[str, Any]) -> "DecoderConfig":
        """Build a config from a plain option dict; unknown keys are ignored."""
        opt = opt or {}
        missing: List[str] = [k for k in REQUIRED_KEYS if opt.get(k) is None]
        if missing:
            raise ConfigError(f"missing required option(s): {', '.join(missing)}")
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in opt.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(config_path: str) -> DecoderConfig:
    """
    Parse a YAML config file into a DecoderConfig.
    Options may sit at the top level or under a `decoder:` mapping.
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(f"Config file '{config_path}' not found.")
        raise
    except yaml.YAMLError as e:
        logger.error(f"YAML parse error in '{config_path}': {e}")
        raise
    if "decoder" in cfg:
        cfg = cfg["decoder"]
    config = DecoderConfig.from_dict(cfg)
    logger.info(f"Configuration loaded from {config_path} (mode={config.decode_mode})")
    return config
