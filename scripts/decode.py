#!/usr/bin/env python3
"""
CLI Decoding Tool.

Decode with an ensemble of trained models without installing the package.

Usage:
    python scripts/decode.py --operation gen --models-in encatt=model.pt --src-in test.src --beam 5
    python scripts/decode.py --operation ppl --models-in "encatt=a.pt|nlm=lm.pt" --src-in test.src < test.trg
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.nmtdecode.cli import main


if __name__ == "__main__":
    sys.exit(main())
