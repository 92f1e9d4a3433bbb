# aim_encoder/config.py
from __future__ import annotations
import json
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union


class PositionEmbeddingType(str, Enum):
    ABSOLUTE = "absolute"  # learned
    SINCOS = "sincos"      # fixed 2D sin/cos


# config.json key -> field name
_JSON_KEYS = {
    "model_type": "model_type",
    "hidden_size": "hidden_size",
    "num_hidden_layers": "num_hidden_layers",
    "num_attention_heads": "num_attention_heads",
    "intermediate_size": "intermediate_size",
    "image_size": "image_size",
    "patch_size": "patch_size",
    "num_channels": "num_channels",
    "layer_norm_eps": "layer_norm_eps",
    "position_embedding_type": "position_embedding_type",
    "qkv_bias": "qkv_bias",
    "mlp_bias": "mlp_bias",
    "mlp_ratio": "mlp_ratio",
}


@dataclass(frozen=True)
class AIMv2Config:
    """Hyperparameters of the vision encoder. Validated on construction, never mutated.

    ``mlp_ratio`` is carried through from config.json as metadata only; the
    feed-forward width is always ``intermediate_size`` (released checkpoints
    do not satisfy ``intermediate_size == hidden_size * mlp_ratio``).
    """

    model_type: str = "aimv2"
    hidden_size: int = 1024
    num_hidden_layers: int = 24
    num_attention_heads: int = 8
    intermediate_size: int = 2816
    image_size: int = 224
    patch_size: int = 14
    num_channels: int = 3
    layer_norm_eps: float = 1e-6
    position_embedding_type: PositionEmbeddingType = PositionEmbeddingType.ABSOLUTE
    qkv_bias: bool = True
    mlp_bias: bool = True
    mlp_ratio: float = 4.0

    def __post_init__(self):
        try:
            kind = PositionEmbeddingType(self.position_embedding_type)
        except ValueError:
            raise ValueError(f"Unknown position_embedding_type: {self.position_embedding_type!r}") from None
        object.__setattr__(self, "position_embedding_type", kind)

        for name in ("hidden_size", "num_hidden_layers", "num_attention_heads",
                     "intermediate_size", "image_size", "patch_size", "num_channels"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.layer_norm_eps <= 0:
            raise ValueError(f"layer_norm_eps must be positive, got {self.layer_norm_eps}")
        if self.mlp_ratio <= 0:
            raise ValueError(f"mlp_ratio must be positive, got {self.mlp_ratio}")
        if self.hidden_size % self.num_attention_heads != 0:
            raise ValueError(f"hidden_size ({self.hidden_size}) must be divisible by "
                             f"num_attention_heads ({self.num_attention_heads})")
        if self.image_size % self.patch_size != 0:
            raise ValueError(f"image_size ({self.image_size}) must be divisible by patch_size ({self.patch_size})")

    @property
    def grid_size(self) -> int:
        return self.image_size // self.patch_size

    @property
    def num_patches(self) -> int:
        return self.grid_size * self.grid_size

    @property
    def sequence_length(self) -> int:
        return self.num_patches + 1  # + CLS

    @property
    def head_dim(self) -> int:
        return self.hidden_size // self.num_attention_heads

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AIMv2Config":
        kwargs = {_JSON_KEYS[k]: v for k, v in data.items() if k in _JSON_KEYS}
        return cls(**kwargs)

    @classmethod
    def from_json_string(cls, text: str) -> "AIMv2Config":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid config JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Config JSON must be an object, got {type(data).__name__}")
        return cls.from_dict(data)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "AIMv2Config":
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Config file not found: {path}")
        return cls.from_json_string(path.read_text(encoding="utf-8"))

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["position_embedding_type"] = self.position_embedding_type.value
        return out

    def summary(self) -> str:
        s, p = self.image_size, self.patch_size
        return "\n".join([
            "AIMv2 Model Information",
            "-----------------------",
            f"Type: {self.model_type}",
            f"Image Size: {s}x{s}",
            f"Patch Size: {p}x{p}",
            f"Patches: {self.num_patches}",
            f"Sequence Length: {self.sequence_length} (patches + CLS)",
            f"Hidden Size: {self.hidden_size}",
            f"Layers: {self.num_hidden_layers}",
            f"Attention Heads: {self.num_attention_heads}",
            f"Position Embedding: {self.position_embedding_type.value}",
        ])


def aimv2_large_patch14_224(**overrides) -> AIMv2Config:
    return AIMv2Config(**{"model_type": "aimv2-large-patch14-224", "hidden_size": 1024,
                          "num_hidden_layers": 24, "num_attention_heads": 8,
                          "intermediate_size": 2816, "image_size": 224, **overrides})


def aimv2_large_patch14_336(**overrides) -> AIMv2Config:
    return aimv2_large_patch14_224(**{"model_type": "aimv2-large-patch14-336", "image_size": 336, **overrides})


def aimv2_large_patch14_448(**overrides) -> AIMv2Config:
    return aimv2_large_patch14_224(**{"model_type": "aimv2-large-patch14-448", "image_size": 448, **overrides})


def aimv2_tiny(**overrides) -> AIMv2Config:
    return AIMv2Config(**{"model_type": "aimv2-tiny", "hidden_size": 64, "num_hidden_layers": 2,
                          "num_attention_heads": 4, "intermediate_size": 256,
                          "image_size": 32, "patch_size": 8, **overrides})


PRESETS = {
    "aimv2-large-patch14-224": aimv2_large_patch14_224,
    "aimv2-large-patch14-336": aimv2_large_patch14_336,
    "aimv2-large-patch14-448": aimv2_large_patch14_448,
    "aimv2-tiny": aimv2_tiny,
}
