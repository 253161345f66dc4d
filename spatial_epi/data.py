"""
Table storage for the model. A YAML file maps logical table names to CSV files, relative to the YAML file itself, and
names the directory outputs are written to::

    tables:
      parameters: parameters.csv
      alert-levels: alert_levels.csv
    output_directory: output
"""
# pylint: disable=import-error
from pathlib import Path
from typing import Dict, Optional, Union

import pandas as pd  # type: ignore
import yaml


class Datastore:
    """
    Reads input tables and writes output tables.

    :param config_path: path to the YAML configuration
    :param config: the parsed configuration
    """

    def __init__(self, config_path: Path, config: Dict):
        self.config_path = config_path
        self.base = config_path.parent
        self.tables: Dict[str, str] = dict(config.get("tables") or {})
        self.output_directory = self.base / config.get("output_directory", "output")

    @classmethod
    def from_config(cls, config_path: Union[str, Path]) -> "Datastore":
        config_path = Path(config_path)
        with open(config_path) as fp:
            config = yaml.safe_load(fp) or {}
        return cls(config_path, config)

    def __enter__(self) -> "Datastore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def read_table(self, name: str, optional: bool = False) -> Optional[pd.DataFrame]:
        """
        Read a configured table

        :param name: logical name of the table
        :param optional: return None instead of raising if the table is not configured
        :return: the table
        """
        if name not in self.tables:
            if optional:
                return None
            raise KeyError(f"Table {name} is not configured in {self.config_path}")
        return pd.read_csv(self.base / self.tables[name])

    def write_table(self, name: str, value: pd.DataFrame) -> Path:
        """
        Write a table as `<output_directory>/<name>.csv`

        :param name: name of the table
        :param value: the table
        :return: the path written to
        """
        self.output_directory.mkdir(parents=True, exist_ok=True)
        path = self.output_directory / f"{name}.csv"
        value.to_csv(path, index=False)
        return path
