import json
import random
from pathlib import Path
import numpy as np
import pandas as pd
import torch
from PIL import Image, ImageDraw
from safetensors.torch import save_file
import sys
sys.path.append(str(Path(__file__).resolve().parents[1]))

from aim_encoder.config import aimv2_tiny
from aim_encoder.model import build_encoder
from aim_encoder.weights import to_torch_layout

COLORS = {
    "red": (255, 0, 0),
    "blue": (0, 0, 255),
    "green": (0, 255, 0),
    "yellow": (255, 255, 0),
    "purple": (128, 0, 128),
    "orange": (255, 165, 0),
}
SHAPES = ["circle", "rectangle", "triangle"]


def create_synthetic_images(num_samples=16, output_dir="data/synthetic", size=64):
    """Shape images plus images.csv (image_path, label)."""
    output_dir = Path(output_dir)
    (output_dir / "images").mkdir(parents=True, exist_ok=True)

    rows = []
    for i in range(num_samples):
        img = Image.new("RGB", (size, size), (255, 255, 255))
        draw = ImageDraw.Draw(img)
        color_name = random.choice(list(COLORS))
        shape = random.choice(SHAPES)
        c = size // 2
        r = random.randint(size // 8, size // 4)

        if shape == "circle":
            draw.ellipse([c - r, c - r, c + r, c + r], fill=COLORS[color_name])
        elif shape == "rectangle":
            draw.rectangle([c - r, c - r, c + r, c + r // 2], fill=COLORS[color_name])
        else:
            draw.polygon([(c, c - r), (c - r, c + r), (c + r, c + r)], fill=COLORS[color_name])

        # light noise so no two images are identical
        arr = np.asarray(img).astype(np.int16) + np.random.randint(-8, 9, (size, size, 3))
        img = Image.fromarray(arr.clip(0, 255).astype(np.uint8))

        name = f"synthetic_{i:04d}.png"
        img.save(output_dir / "images" / name)
        rows.append({"image_path": f"images/{name}", "label": f"{color_name} {shape}"})

    df = pd.DataFrame(rows)
    df.to_csv(output_dir / "images.csv", index=False)
    return df


def create_synthetic_checkpoint(output_dir="data/synthetic/model", **config_overrides):
    """Random tiny encoder saved the way a PyTorch training run would save it."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    config = aimv2_tiny(**config_overrides)
    model = build_encoder(config)

    (output_dir / "config.json").write_text(json.dumps(config.to_dict(), indent=2))
    save_file(to_torch_layout(model.state_dict()), str(output_dir / "model.safetensors"))
    return config


if __name__ == "__main__":
    torch.manual_seed(0)
    random.seed(0)
    df = create_synthetic_images()
    config = create_synthetic_checkpoint()
    print(f"Generated {len(df)} synthetic images and a {config.model_type} checkpoint under data/synthetic")
