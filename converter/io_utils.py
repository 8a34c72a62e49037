"""入力バッファの正規化とサイズ計算を集約したユーティリティ。"""

from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np
from PIL import Image

from .errors import InvalidImageError

Size = Tuple[int, int]


def _require_cv2():
    try:
        import cv2  # type: ignore
    except Exception as exc:
        raise RuntimeError("OpenCV (cv2) が必要です。pip install opencv-python") from exc
    return cv2


def _check_size(width: Any, height: Any, label: str) -> Size:
    try:
        w, h = int(width), int(height)
    except (TypeError, ValueError) as exc:
        raise InvalidImageError(f"{label}の幅・高さが数値ではありません: {width!r}, {height!r}") from exc
    if w <= 0 or h <= 0:
        raise InvalidImageError(f"{label}の幅・高さは1以上にしてください。({w}x{h})")
    return w, h


def _to_uint8(arr: np.ndarray) -> np.ndarray:
    if arr.dtype == np.uint8:
        return arr
    if arr.dtype == np.bool_:
        return arr.astype(np.uint8) * 255
    if not np.issubdtype(arr.dtype, np.number):
        raise InvalidImageError(f"画素バッファの型に対応していません: {arr.dtype}")
    return np.clip(np.floor(arr.astype(np.float64) + 0.5), 0, 255).astype(np.uint8)


def _as_rgba_array(pixels: Any, width: Optional[int] = None, height: Optional[int] = None) -> np.ndarray:
    """画素データを (H, W, 4) uint8 のRGBA配列へ揃える。

    受け付ける形式:
    - PIL.Image（モードは問わない）
    - (H, W) グレースケール / (H, W, 3) RGB / (H, W, 4) RGBA の配列
    - 長さ width*height*4 の一次元RGBAバッファ（Canvasの ImageData と同じ並び）
    width/height を渡した場合は実寸と一致するか検証する。
    """
    if isinstance(pixels, Image.Image):
        arr = np.asarray(pixels.convert("RGBA"), dtype=np.uint8)
    else:
        if isinstance(pixels, (bytes, bytearray, memoryview)):
            arr = np.frombuffer(pixels, dtype=np.uint8)
        else:
            try:
                arr = np.asarray(pixels)
            except Exception as exc:
                raise InvalidImageError("画素バッファを配列として解釈できません。") from exc
        if arr.ndim == 1:
            if width is None or height is None:
                raise InvalidImageError("一次元バッファには幅と高さの指定が必要です。")
            w, h = _check_size(width, height, "入力画像")
            if arr.size != w * h * 4:
                raise InvalidImageError(f"バッファ長 {arr.size} が {w}x{h}x4 と一致しません。")
            arr = arr.reshape(h, w, 4)
        arr = _to_uint8(arr)
        cv2 = _require_cv2()
        if arr.ndim == 2:
            arr = cv2.cvtColor(np.ascontiguousarray(arr), cv2.COLOR_GRAY2RGBA)
        elif arr.ndim == 3 and arr.shape[2] == 1:
            arr = cv2.cvtColor(np.ascontiguousarray(arr[:, :, 0]), cv2.COLOR_GRAY2RGBA)
        elif arr.ndim == 3 and arr.shape[2] == 3:
            arr = cv2.cvtColor(np.ascontiguousarray(arr), cv2.COLOR_RGB2RGBA)
        elif not (arr.ndim == 3 and arr.shape[2] == 4):
            raise InvalidImageError(f"画素バッファの形状に対応していません: {arr.shape}")

    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise InvalidImageError("入力画像が空です。")
    if width is not None or height is not None:
        w, h = _check_size(width if width is not None else arr.shape[1], height if height is not None else arr.shape[0], "入力画像")
        if (h, w) != arr.shape[:2]:
            raise InvalidImageError(f"指定サイズ {w}x{h} と画素バッファ {arr.shape[1]}x{arr.shape[0]} が一致しません。")
    return arr


def _compute_fit_size(shape: Size, target: Size) -> Size:
    """縦横比を保ったまま target に収まる整数サイズを返す（最低1ピクセル）。"""
    h, w = shape
    target_w, target_h = target
    scale = min(target_w / w, target_h / h)
    # 丸めの結果が0にならないよう最低1ピクセルにする
    new_w = min(target_w, max(1, int(round(w * scale))))
    new_h = min(target_h, max(1, int(round(h * scale))))
    return new_w, new_h
