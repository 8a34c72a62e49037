"""Color space utilities: sRGB, XYZ, CIE Lab and the CIEDE2000 difference."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np

Lab = Tuple[float, float, float]

# sRGB (D65) -> XYZ
_SRGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ],
    dtype=np.float64,
)
_D65_WHITE = np.array([0.95047, 1.00000, 1.08883], dtype=np.float64)
_LAB_EPSILON = 0.008856
_LAB_KAPPA = 903.3
_POW25_7 = 25.0 ** 7
_LUMINANCE_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)


def srgb_to_linear(rgb: np.ndarray) -> np.ndarray:
    """Convert sRGB (0-1) to linear RGB."""
    return np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)


def rgb_to_xyz(rgb: np.ndarray) -> np.ndarray:
    """Convert RGB (0-255) to CIE XYZ under D65. Out-of-range input is clamped."""
    arr = np.clip(np.asarray(rgb, dtype=np.float64), 0.0, 255.0)
    linear = srgb_to_linear(arr / 255.0)
    return linear @ _SRGB_TO_XYZ.T


def _lab_f(t: np.ndarray) -> np.ndarray:
    return np.where(t > _LAB_EPSILON, np.cbrt(t), (_LAB_KAPPA * t + 16.0) / 116.0)


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert RGB (0-255) to Lab (L in 0-100). Accepts any shape ending in 3."""
    xyz = rgb_to_xyz(rgb) / _D65_WHITE
    fx = _lab_f(xyz[..., 0])
    fy = _lab_f(xyz[..., 1])
    fz = _lab_f(xyz[..., 2])
    lab = np.empty(xyz.shape, dtype=np.float64)
    lab[..., 0] = 116.0 * fy - 16.0
    lab[..., 1] = 500.0 * (fx - fy)
    lab[..., 2] = 200.0 * (fy - fz)
    return lab


def to_lab(rgb: Sequence[float]) -> Lab:
    """Convert a single RGB triplet to an (L, a, b) tuple."""
    lab = rgb_to_lab(np.asarray(rgb, dtype=np.float64).reshape(3))
    return float(lab[0]), float(lab[1]), float(lab[2])


def relative_luminance(rgb: Sequence[float]) -> float:
    """Relative luminance (0-1) of an RGB triplet, used for contrast decisions."""
    arr = np.clip(np.asarray(rgb, dtype=np.float64).reshape(3), 0.0, 255.0)
    return float(srgb_to_linear(arr / 255.0) @ _LUMINANCE_WEIGHTS)


def contrast_text_color(rgb: Sequence[float]) -> str:
    """Return 'black' or 'white' for legible text on a given background."""
    # 0.179 is where contrast against black and white is equal
    return "black" if relative_luminance(rgb) > 0.179 else "white"


def ciede2000_pair(lab1: Sequence[float], lab2: Sequence[float]) -> float:
    """CIEDE2000 between two Lab colors (Sharma, Wu, Dalal 2005).

    Scalar version used by the k-d tree search, where per-call numpy overhead
    would dominate.
    """
    L1, a1, b1 = float(lab1[0]), float(lab1[1]), float(lab1[2])
    L2, a2, b2 = float(lab2[0]), float(lab2[1]), float(lab2[2])

    C1 = math.hypot(a1, b1)
    C2 = math.hypot(a2, b2)
    avg_C7 = ((C1 + C2) / 2.0) ** 7
    G = 0.5 * (1 - math.sqrt(avg_C7 / (avg_C7 + _POW25_7)))
    a1p = (1 + G) * a1
    a2p = (1 + G) * a2
    C1p = math.hypot(a1p, b1)
    C2p = math.hypot(a2p, b2)

    h1p = math.degrees(math.atan2(b1, a1p)) % 360.0 if C1p else 0.0
    h2p = math.degrees(math.atan2(b2, a2p)) % 360.0 if C2p else 0.0

    deltaLp = L2 - L1
    deltaCp = C2p - C1p
    chroma_product = C1p * C2p
    if chroma_product == 0:
        deltahp = 0.0
        avg_Hp = h1p + h2p
    else:
        deltahp = h2p - h1p
        if deltahp > 180:
            deltahp -= 360
        elif deltahp < -180:
            deltahp += 360
        avg_Hp = (h1p + h2p) / 2.0
        if abs(h1p - h2p) > 180:
            avg_Hp = avg_Hp + 180 if avg_Hp < 180 else avg_Hp - 180
    deltaHp = 2 * math.sqrt(chroma_product) * math.sin(math.radians(deltahp) / 2.0)

    avg_L = (L1 + L2) / 2.0
    avg_Cp = (C1p + C2p) / 2.0
    T = (
        1
        - 0.17 * math.cos(math.radians(avg_Hp - 30))
        + 0.24 * math.cos(math.radians(2 * avg_Hp))
        + 0.32 * math.cos(math.radians(3 * avg_Hp + 6))
        - 0.20 * math.cos(math.radians(4 * avg_Hp - 63))
    )
    Sl = 1 + (0.015 * (avg_L - 50) ** 2) / math.sqrt(20 + (avg_L - 50) ** 2)
    Sc = 1 + 0.045 * avg_Cp
    Sh = 1 + 0.015 * avg_Cp * T

    delta_theta = 30 * math.exp(-(((avg_Hp - 275) / 25) ** 2))
    avg_Cp7 = avg_Cp ** 7
    Rc = 2 * math.sqrt(avg_Cp7 / (avg_Cp7 + _POW25_7))
    Rt = -math.sin(2 * math.radians(delta_theta)) * Rc

    dl = deltaLp / Sl
    dc = deltaCp / Sc
    dh = deltaHp / Sh
    return math.sqrt(max(0.0, dl * dl + dc * dc + dh * dh + Rt * dc * dh))


def ciede2000_matrix(lab1: np.ndarray, lab2: np.ndarray) -> np.ndarray:
    """Vectorized CIEDE2000 distance matrix, shape (len(lab1), len(lab2))."""
    lab1 = np.asarray(lab1, dtype=np.float64).reshape(-1, 3)
    lab2 = np.asarray(lab2, dtype=np.float64).reshape(-1, 3)
    l1 = lab1[:, 0][:, None]
    a1 = lab1[:, 1][:, None]
    b1 = lab1[:, 2][:, None]
    l2 = lab2[None, :, 0]
    a2 = lab2[None, :, 1]
    b2 = lab2[None, :, 2]

    avg_l = (l1 + l2) * 0.5
    c1 = np.sqrt(a1 ** 2 + b1 ** 2)
    c2 = np.sqrt(a2 ** 2 + b2 ** 2)
    avg_c7 = ((c1 + c2) * 0.5) ** 7
    g = 0.5 * (1 - np.sqrt(avg_c7 / (avg_c7 + _POW25_7)))
    a1p = (1 + g) * a1
    a2p = (1 + g) * a2
    c1p = np.sqrt(a1p ** 2 + b1 ** 2)
    c2p = np.sqrt(a2p ** 2 + b2 ** 2)
    avg_cp = (c1p + c2p) * 0.5

    h1p = np.degrees(np.arctan2(b1, a1p))
    h2p = np.degrees(np.arctan2(b2, a2p))
    h1p = np.where(h1p < 0, h1p + 360.0, h1p)
    h2p = np.where(h2p < 0, h2p + 360.0, h2p)
    h1p = np.where(c1p == 0, 0.0, h1p)
    h2p = np.where(c2p == 0, 0.0, h2p)
    zero_chroma = (c1p * c2p) == 0

    deltahp = h2p - h1p
    deltahp = np.where(deltahp > 180.0, deltahp - 360.0, deltahp)
    deltahp = np.where(deltahp < -180.0, deltahp + 360.0, deltahp)
    deltahp = np.where(zero_chroma, 0.0, deltahp)

    delta_lp = l2 - l1
    delta_cp = c2p - c1p
    delta_hp = 2.0 * np.sqrt(c1p * c2p) * np.sin(np.radians(deltahp) * 0.5)

    avg_hp = (h1p + h2p) * 0.5
    avg_hp = np.where(np.abs(h1p - h2p) > 180.0, avg_hp + 180.0, avg_hp)
    avg_hp = np.where(avg_hp >= 360.0, avg_hp - 360.0, avg_hp)
    avg_hp = np.where(zero_chroma, h1p + h2p, avg_hp)

    t = (
        1
        - 0.17 * np.cos(np.radians(avg_hp - 30.0))
        + 0.24 * np.cos(np.radians(2.0 * avg_hp))
        + 0.32 * np.cos(np.radians(3.0 * avg_hp + 6.0))
        - 0.20 * np.cos(np.radians(4.0 * avg_hp - 63.0))
    )

    sl = 1 + (0.015 * (avg_l - 50.0) ** 2) / np.sqrt(20.0 + (avg_l - 50.0) ** 2)
    sc = 1 + 0.045 * avg_cp
    sh = 1 + 0.015 * avg_cp * t

    delta_theta = 30.0 * np.exp(-((avg_hp - 275.0) / 25.0) ** 2)
    avg_cp7 = avg_cp ** 7
    rc = 2.0 * np.sqrt(avg_cp7 / (avg_cp7 + _POW25_7))
    rt = -np.sin(2.0 * np.radians(delta_theta)) * rc

    squared = (
        (delta_lp / sl) ** 2
        + (delta_cp / sc) ** 2
        + (delta_hp / sh) ** 2
        + rt * (delta_cp / sc) * (delta_hp / sh)
    )
    return np.sqrt(np.maximum(squared, 0.0))


def ciede2000(lab_sample: np.ndarray, lab_array: np.ndarray) -> np.ndarray:
    """Vectorized CIEDE2000 between one sample and many targets.

    lab_sample: shape (3,)
    lab_array: shape (N, 3)
    """
    return ciede2000_matrix(np.asarray(lab_sample).reshape(1, 3), lab_array)[0]
