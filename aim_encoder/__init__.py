# aim_encoder/__init__.py
from .config import AIMv2Config, PositionEmbeddingType, PRESETS
from .model import AIMv2Encoder, build_encoder
from .pos_embed import sincos_position_embedding
from .weights import (sanitize, load_safetensors, load_and_sanitize, load_weights,
                      from_pretrained, to_torch_layout)

__all__ = [
    "AIMv2Config", "PositionEmbeddingType", "PRESETS",
    "AIMv2Encoder", "build_encoder", "sincos_position_embedding",
    "sanitize", "load_safetensors", "load_and_sanitize", "load_weights", "from_pretrained",
    "to_torch_layout",
]
