"""変換エンジンの例外クラス群。"""

from __future__ import annotations


class BeadConverterError(Exception):
    """変換エンジン由来の例外の基底クラス。"""


class InvalidImageError(BeadConverterError, ValueError):
    """画素バッファやサイズ指定が不正なときに送出する。"""


class EmptyPaletteError(BeadConverterError, ValueError):
    """色を1つも持たないパレットで照合しようとしたときに送出する。"""


class StalePatternError(BeadConverterError):
    """図案を作成時と異なるパレット（ID・リビジョン違い）で解釈しようとした。"""

    def __init__(self, expected: object, actual: object) -> None:
        super().__init__(f"図案のパレット {expected} と現在のパレット {actual} が一致しません。")
        self.expected = expected
        self.actual = actual
