from __future__ import annotations

from typing import Iterable, Optional

import pandas as pd


class DatasetError(ValueError):
    """A source dataset is missing fields, geometry or a usable CRS."""

    def __init__(self, dataset: str, message: str, key: Optional[str] = None):
        self.dataset = dataset
        self.key = key
        where = f"[{dataset}]" if key is None else f"[{dataset} key={key}]"
        super().__init__(f"{where} {message}")


class DensityFetchError(RuntimeError):
    """The population density service could not be read after all retries."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"Could not fetch density blocks from {url}: {reason}")


def require_columns(df: pd.DataFrame, columns: Iterable[str], dataset: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise DatasetError(dataset, f"missing required columns: {missing}. Found: {list(df.columns)[:20]}")
