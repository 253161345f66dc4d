from typing import Dict

import pandas as pd

from spatial_epi.reporting import HEADER_COLUMNS


def read_header(path) -> Dict[str, str]:
    """Reads the name/value rows of a run header, skipping its two preamble lines"""
    df = pd.read_csv(path, skiprows=2, header=None, names=HEADER_COLUMNS, dtype=str, keep_default_na=False)
    return dict(zip(df["name"], df["value"]))
