import warnings
warnings.filterwarnings("ignore")

import argparse
import logging
from pathlib import Path
import pytorch_lightning as pl
import torch
import sys
sys.path.append(str(Path(__file__).resolve().parents[1]))

from aim_encoder.config import PRESETS
from aim_encoder.model import build_encoder
from aim_encoder.predictor import AIMv2FeatureExtractor, ImageDataModule, FEATURES
from aim_encoder.utils import set_seed, setup_logging
from aim_encoder.weights import from_pretrained

logger = logging.getLogger("extract_features")

def parse():
    ap = argparse.ArgumentParser()
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--model-dir", help="directory with config.json and model.safetensors")
    src.add_argument("--preset", choices=sorted(PRESETS), help="random-init encoder (smoke tests)")
    ap.add_argument("--weights-file", default="model.safetensors")
    imgs = ap.add_mutually_exclusive_group(required=True)
    imgs.add_argument("--image-dir")
    imgs.add_argument("--image-csv")
    ap.add_argument("--img-root", default=None)
    ap.add_argument("--feature", default="pooled", choices=FEATURES)
    ap.add_argument("--batch-size", type=int, default=32)
    ap.add_argument("--num-workers", type=int, default=0)
    ap.add_argument("--output", default="features.pt")
    ap.add_argument("--seed", type=int, default=42)
    ap.add_argument("--log-level", default="INFO")
    return ap.parse_args()

def main():
    args = parse()
    setup_logging(args.log_level)
    set_seed(args.seed)

    if args.model_dir:
        encoder = from_pretrained(args.model_dir, weights_file=args.weights_file)
    else:
        encoder = build_encoder(PRESETS[args.preset]())
    logger.info("\n%s", encoder.info)

    module = AIMv2FeatureExtractor(encoder, feature=args.feature)
    dm = ImageDataModule(
        image_dir=args.image_dir, image_csv=args.image_csv, img_root=args.img_root,
        batch_size=args.batch_size, num_workers=args.num_workers,
        image_size=encoder.config.image_size,
    )

    trainer = pl.Trainer(
        accelerator="gpu" if torch.cuda.is_available() else "cpu",
        devices=1,
        precision="32",
        logger=False,
        enable_checkpointing=False,
        enable_progress_bar=True,
    )
    outputs = trainer.predict(module, datamodule=dm)
    result = AIMv2FeatureExtractor.gather(outputs)

    torch.save(result, args.output)
    logger.info("Saved %s features %s for %d images to %s",
                args.feature, tuple(result["features"].shape), len(result["paths"]), args.output)

if __name__ == "__main__":
    main()
