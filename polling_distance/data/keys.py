from __future__ import annotations
import pandas as pd

BOROUGH_WIDTH = 2
SUBDISTRICT_WIDTH = 3
KEY_WIDTH = BOROUGH_WIDTH + SUBDISTRICT_WIDTH


def _clean_raw(raw: pd.Series) -> pd.Series:
    # spreadsheet cells come back as "1.0" when the column was numeric
    return raw.astype("string").str.strip().str.replace(r"\.0$", "", regex=True)


def _std_borough(raw: pd.Series) -> pd.Series:
    s = _clean_raw(raw).str.replace(r"[^0-9]", "", regex=True)
    s = s.where(s.str.len() > 0, pd.NA)
    s = s.str[-BOROUGH_WIDTH:].str.zfill(BOROUGH_WIDTH)
    return s.where(~s.isin({"00"}), pd.NA)


def _std_subdistrict(raw: pd.Series) -> pd.Series:
    s = _clean_raw(raw).str.replace(r"[^0-9]", "", regex=True)
    s = s.where(s.str.len() > 0, pd.NA)
    return s.str[-SUBDISTRICT_WIDTH:].str.zfill(SUBDISTRICT_WIDTH)


def build_key_from_parts(borough: pd.Series, subdistrict: pd.Series) -> pd.Series:
    """Borough + sub-district fields (any prefixes stripped) -> "BBSSS"."""
    bez = _std_borough(borough).astype("string")
    wbz = _std_subdistrict(subdistrict).astype("string")
    valid = bez.notna() & wbz.notna()
    out = pd.Series(pd.NA, dtype="string", index=bez.index)
    out.loc[valid] = (bez.loc[valid] + wbz.loc[valid]).astype("string")
    return out


def normalize_key(raw: pd.Series) -> pd.Series:
    """
    Normalize a combined district key to "BBSSS".

    Two digit groups separated by anything else ("01-002", "Bez 1 / W002")
    are treated as borough and sub-district and padded; otherwise all
    non-digits are stripped and exactly five digits must remain. Values that
    fit neither shape come back as <NA>.
    """
    s = _clean_raw(raw)
    parts = s.str.extract(r"^\D*(?P<bez>\d{1,2})\D+(?P<wbz>\d{1,3})\D*$")
    split = parts["bez"].notna() & parts["wbz"].notna()

    out = pd.Series(pd.NA, dtype="string", index=s.index)
    if split.any():
        out.loc[split] = build_key_from_parts(parts.loc[split, "bez"], parts.loc[split, "wbz"])

    digits = s.str.replace(r"[^0-9]", "", regex=True)
    whole = ~split & (digits.str.len() == KEY_WIDTH) & ~digits.str.startswith("00").fillna(True)
    out.loc[whole.fillna(False)] = digits.loc[whole.fillna(False)]
    return out


def key_is_valid(key: pd.Series) -> pd.Series:
    return key.astype("string").str.fullmatch(r"\d{5}").fillna(False).astype(bool)
