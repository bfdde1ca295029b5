"""NVENC session capacity lookup.

The GPU name comes from nvidia-smi; the capacity table maps name fragments to
the number of concurrent encoder sessions the driver allows for that family.
"""

import logging
import re
import subprocess
from typing import Optional, Tuple

from chaptr.domain.errors import ResolutionError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_CAPACITY = 8
QUERY_TIMEOUT_S = 10.0

# (pattern, sessions). Matched against the normalized name; longest pattern wins.
SESSION_CAPACITY_TABLE: Tuple[Tuple[str, int], ...] = (
    ("GTX 9", 2),
    ("GTX 10", 3),
    ("GTX 16", 3),
    ("RTX 20", 5),
    ("RTX 30", 5),
    ("RTX 3090", 8),
    ("RTX 40", 8),
    ("RTX 50", 8),
    ("TITAN", 5),
    ("QUADRO P", 32),
    ("QUADRO RTX", 32),
    ("RTX A", 32),
    ("RTX 6000 ADA", 32),
    ("T4", 32),
    ("L4", 32),
    ("L40", 32),
    ("A10", 32),
    ("A40", 32),
)

_BOILERPLATE_RE = re.compile(r"\b(NVIDIA|GEFORCE|LAPTOP GPU)\b|\(TM\)|\(R\)")


def normalize_gpu_name(name: str) -> str:
    """'NVIDIA GeForce RTX 4090 Laptop GPU' -> 'RTX 4090'"""
    text = _BOILERPLATE_RE.sub(" ", name.upper())
    return " ".join(text.split())


def lookup_session_capacity(gpu_name: str) -> int:
    normalized = normalize_gpu_name(gpu_name)
    best: Optional[Tuple[str, int]] = None
    for pattern, capacity in SESSION_CAPACITY_TABLE:
        if pattern in normalized and (best is None or len(pattern) > len(best[0])):
            best = (pattern, capacity)
    if best is None:
        logger.warning(
            f"Unknown GPU '{gpu_name}', assuming {DEFAULT_SESSION_CAPACITY} encoder sessions"
        )
        return DEFAULT_SESSION_CAPACITY
    logger.debug(f"GPU '{gpu_name}' matched '{best[0]}' -> {best[1]} sessions")
    return best[1]


def query_gpu_name(timeout: float = QUERY_TIMEOUT_S) -> str:
    """Returns the name of the first GPU reported by nvidia-smi."""
    cmd = ["nvidia-smi", "--query-gpu=name", "--format=csv,noheader"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ResolutionError(
            "nvidia-smi not found; pass --threads to set the encoder session count manually"
        ) from e
    except subprocess.CalledProcessError as e:
        raise ResolutionError(f"nvidia-smi failed: {(e.stderr or '').strip() or e}") from e
    except subprocess.TimeoutExpired as e:
        raise ResolutionError(f"nvidia-smi did not answer within {timeout:g}s") from e
    except OSError as e:
        raise ResolutionError(f"nvidia-smi could not be run: {e}") from e

    names = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    if not names:
        raise ResolutionError("nvidia-smi reported no GPU")
    return names[0]


def resolve_concurrency(override: Optional[int] = None, gpu_name: Optional[str] = None) -> int:
    """Number of jobs that may encode at the same time.

    An explicit override wins. Otherwise one session is kept free when the
    GPU offers more than one.
    """
    if override is not None:
        if override < 1:
            raise ResolutionError(f"Concurrency override must be >= 1, got {override}")
        return override
    if gpu_name is None:
        gpu_name = query_gpu_name()
    capacity = lookup_session_capacity(gpu_name)
    return max(capacity - 1, 1)
