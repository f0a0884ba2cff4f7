"""
Runtime Utilities.

Provides:
- Deterministic seeding for reproducible runs
- Device selection
"""

import random
from typing import Optional

import numpy as np
import torch


def set_seed(seed: int = 42):
    """Set random seeds for reproducibility.

    Args:
        seed: Random seed value.
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)


def get_device(name: Optional[str] = None) -> torch.device:
    """Resolve a device name; "auto" or None picks CUDA when available."""
    if name in (None, "auto"):
        return torch.device('cuda' if torch.cuda.is_available() else 'cpu')
    return torch.device(name)
