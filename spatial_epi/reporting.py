"""
Output files of a run. Each run writes up to three files sharing a stem:

1. ``<stem>.header`` -- two preamble lines, then ``name,value`` rows describing how the run was produced
2. ``<stem>.csv`` -- the detail table, one row per locale per simulated day
3. ``<stem>.cases`` -- one row per case, only when case logging is enabled

Parameter names are written with dots instead of underscores (``alert_policy`` becomes ``alert.policy``).
"""
# pylint: disable=import-error
import datetime as dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pandas as pd  # type: ignore

from spatial_epi import __version__
from spatial_epi.common import RepoInfo
from spatial_epi.simulation import LocaleModel, RunOutput

logger = logging.getLogger(__name__)

HEADER_COLUMNS = ["name", "value"]


def dotted(name: str) -> str:
    """
    >>> dotted("max_seconds_per_day")
    'max.seconds.per.day'
    """
    return name.replace("_", ".")


def headerTable(
        model: LocaleModel,
        seed: int,
        trial: int,
        stem: str,
        repoInfo: RepoInfo,
        summary: Dict[str, Any],
) -> pd.DataFrame:
    """
    Build the name/value rows of a header file.

    :param model: the model that was run
    :param seed: seed of the experiment the run belongs to
    :param trial: index of the run in the experiment
    :param stem: common stem of the run's files
    :param repoInfo: provenance of the code
    :param summary: the run summary
    :return: pandas DataFrame with the columns name and value
    """
    rows: List[Tuple[str, Any]] = []
    for name, value in model.parameters.items():
        rows.append((dotted(name), value))
    rows.append(("seed", seed))
    rows.append(("trial", trial))
    rows.append(("num.locales", len(model.locales)))
    rows.append(("population", sum(locale.pop0 for locale in model.locales)))
    for level, alertLevel in model.alertLevels.levels.items():
        rows.append((f"alert.level.{level}.control", alertLevel.control))
        rows.append((f"alert.level.{level}.flow", alertLevel.flow))
    for level, threshold in enumerate(model.alertTriggers, start=model.alertLevels.minLevel + 1):
        rows.append((f"alert.trigger.{level}", threshold))
    for name, value in summary.items():
        rows.append((f"run.{dotted(name)}", value))
    rows.append(("log.file.name", f"{stem}.csv"))
    rows.append(("cases.file.name", f"{stem}.cases" if model.run.logCases else ""))
    rows.append(("git.sha", repoInfo.git_sha))
    rows.append(("git.uri", repoInfo.uri))
    rows.append(("git.dirty", repoInfo.is_dirty))

    # "seed" is in the parameters as well, the experiment seed wins
    header = pd.DataFrame(rows, columns=HEADER_COLUMNS).drop_duplicates(subset="name", keep="last")
    return header.reset_index(drop=True)


def writeRun(directory: Path, stem: str, header: pd.DataFrame, output: RunOutput) -> List[Path]:
    """
    Write the files of a run

    :param directory: where the files go, created if needed
    :param stem: common stem of the files
    :param header: the header rows, as built by :meth:`headerTable`
    :param output: the output of the run
    :return: the paths written
    """
    directory.mkdir(parents=True, exist_ok=True)
    paths = []

    headerPath = directory / f"{stem}.header"
    with open(headerPath, "w", newline="") as fp:
        fp.write(f"spatial_epi {__version__} run header\n")
        fp.write(f"created,{dt.datetime.now().isoformat(timespec='seconds')}\n")
        header.to_csv(fp, header=False, index=False)
    paths.append(headerPath)

    detailPath = directory / f"{stem}.csv"
    output.detail.to_csv(detailPath, index=False)
    paths.append(detailPath)

    casesName = header.set_index("name")["value"].get("cases.file.name", "")
    if casesName:
        casesPath = directory / casesName
        output.cases.to_csv(casesPath, index=False)
        paths.append(casesPath)

    logger.debug("Wrote %s", [str(path) for path in paths])
    return paths
