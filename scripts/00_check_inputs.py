#!/usr/bin/env python

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from pv_seroreactivity.errors import DataIntegrityError
from pv_seroreactivity.pipeline import check_inputs


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Assemble the Pv cohort and check it (identifiers, cohort size, antigen panel) without analysing."
    )
    parser.add_argument("--config", type=Path, default=Path("config/pipeline.yaml"), help="Pipeline YAML config path")
    parser.add_argument("--out-dir", type=Path, default=None, help="Override outputs.out_dir from the config")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        check_inputs(args.config, out_dir=args.out_dir)
    except DataIntegrityError as exc:
        logging.getLogger("pv_seroreactivity").error("Data integrity check failed: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
