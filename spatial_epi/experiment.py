"""
This is the main module used to run experiments: several independent runs of the same model, each with its own random
stream, executed in worker processes.
"""
# pylint: disable=import-error
import argparse
from concurrent import futures
import logging
import logging.config
from pathlib import Path
import sys
import time
from typing import Optional, List

import pandas as pd  # type: ignore

from spatial_epi.common import Issue, IssueSeverity, log_issue
from . import alert_policy, common, data, random_variates, reporting
from . import simulation as sim

# Default logger, used if module not called as __main__
logger = logging.getLogger(__name__)

COUNT_COLUMNS = [
    "susceptible", "cumulative_cases", "cumulative_infected", "cumulative_recovered", "new_cases", "new_infected",
    "new_recovered", "new_tests", "new_positives", "active_cases", "positive_rate", "alert_level",
]

# command line option -> parameter it overrides
OVERRIDES = {
    "alert_policy": "alert_policy",
    "seed": "seed",
    "trials": "trials",
}


def main(argv):
    """
    Main function to run the experiment
    """
    t0 = time.time()

    args = build_args(argv)
    setup_logger(args)
    logger.info("Parameters\n%s", "\n".join(f"\t{key}={value}" for key, value in args._get_kwargs()))  # pylint: disable=protected-access

    issues: List[Issue] = []

    info = common.get_repo_info()
    if not info.git_sha:
        log_issue(
            logger,
            "Not running from a git repo, so no git_sha associated with the run",
            IssueSeverity.HIGH,
            issues,
        )
    elif info.is_dirty:
        log_issue(logger, "Running out of a dirty git repo", IssueSeverity.HIGH, issues)

    with data.Datastore.from_config(args.config) as store:
        model = sim.createLocaleModel(
            applyOverrides(store.read_table("parameters", optional=True), args),
            store.read_table("alert-levels"),
            store.read_table("alert-triggers"),
            store.read_table("locales", optional=True),
            store.read_table("distances", optional=True),
            store.read_table("initial-infections", optional=True),
            store.read_table("alert-schedule", optional=True),
        )

        results = runSimulation(
            model,
            model.run.seed,
            issues=issues,
            max_workers=None if not args.workers else args.workers,
        )
        aggregated = aggregateResults(results)

        logger.info("Writing output to %s", store.output_directory)
        prefix = args.prefix or f"{model.policy.policy}-seed-{model.run.seed}"
        for i, result in enumerate(results):
            stem = f"{prefix}-run-{i}"
            header = reporting.headerTable(model, model.run.seed, i, stem, info, result.summary)
            reporting.writeRun(store.output_directory, stem, header, result)
        store.write_table(f"{prefix}-summary", aggregated)

    logger.info("Took %.2fs to run the experiment.", time.time() - t0)


def applyOverrides(table: Optional[pd.DataFrame], args: argparse.Namespace) -> pd.DataFrame:
    """
    Replace values of the parameters table with the ones given on the command line

    :param table: the parameters table, possibly None
    :param args: the parsed command line
    :return: a new parameters table
    """
    if table is None:
        table = pd.DataFrame(columns=["Parameter", "Value"])
    table = table.copy()
    for option, parameter in OVERRIDES.items():
        value = getattr(args, option, None)
        if value is None:
            continue
        table = table[table["Parameter"] != parameter]
        table = pd.concat([table, pd.DataFrame({"Parameter": [parameter], "Value": [value]})], ignore_index=True)
    return table


def runSimulation(
        model: sim.LocaleModel,
        random_seed: int,
        issues: List[Issue],
        max_workers: Optional[int] = None,
) -> List[sim.RunOutput]:
    """Run every trial of a model

    :param model: the model to run
    :param random_seed: seed to use when instantiating the SeedSequence object
    :param issues: issues found before the runs, added to the issues of every run
    :param max_workers: maximum number of processes to spawn when running multiple simulations
    :return: outputs of all the trials, in trial order
    """
    results = []
    with futures.ProcessPoolExecutor(max_workers=max_workers) as executor:
        delayed: List[futures.Future] = []
        for random_state in random_variates.seed_generators(random_seed, model.run.trials):
            delayed.append(executor.submit(sim.basicSimulation, model, random_state))

        # results are collected in submission order, so trial i always gets the i-th stream
        for t, future in enumerate(delayed, start=1):
            logger.info("Running simulation (%s/%s)", t, model.run.trials)
            output = future.result()
            results.append(output._replace(issues=issues + output.issues))

    return results


def aggregateResults(results: List[sim.RunOutput]) -> pd.DataFrame:
    """Aggregate results from runs

    :param results: outputs from runSimulation
    :return: mean and standard deviation of every count column, per day and locale. Runs that ended early only
             contribute to the days they reached
    """
    detail = pd.concat(
        [result.detail.assign(trial=i) for i, result in enumerate(results)],
        ignore_index=True,
    )
    agg = detail.groupby(["ticks", "locale_id"], sort=True)[COUNT_COLUMNS].agg(["mean", "std"])
    agg.columns = [f"{column}_{stat}" for column, stat in agg.columns]
    return agg.reset_index()


LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"


def loggingConfig(stderrLevel: str = "INFO", logfile: Optional[Path] = None, fileLevel: str = "INFO") -> dict:
    """
    The dictConfig schema for the package logger. Records go to stderr and, optionally, to a file, each handler with
    its own level. The logger itself lets everything through.

    :param stderrLevel: lowest level printed to stderr
    :param logfile: file to append the log to, if any
    :param fileLevel: lowest level written to the logfile
    :return: a dict accepted by :func:`logging.config.dictConfig`
    """
    handlers = {
        "stderr": {
            "class": "logging.StreamHandler",
            "level": stderrLevel,
            "formatter": "standard",
            "stream": "ext://sys.stderr",
        },
    }
    if logfile is not None:
        handlers["logfile"] = {
            "class": "logging.FileHandler",
            "level": fileLevel,
            "formatter": "standard",
            "filename": str(logfile),
            "encoding": "utf8",
        }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": LOG_FORMAT}},
        "handlers": handlers,
        "loggers": {__package__: {"handlers": list(handlers), "level": "DEBUG"}},
    }


def setup_logger(args: Optional[argparse.Namespace] = None) -> None:
    """
    Configure package-level logger instance from the command line: ``--quiet`` drops stderr to warnings,
    ``--debug`` raises both handlers to debug and ``--logfile`` adds a file handler, creating its directory.

    :param args: argparse.Namespace, or None to log INFO and above to stderr
    """
    if args is None:
        logging.config.dictConfig(loggingConfig())
        return

    stderrLevel = "WARNING" if args.quiet else ("DEBUG" if args.debug else "INFO")
    fileLevel = "DEBUG" if args.debug else "INFO"
    if args.logfile is not None:
        try:
            args.logfile.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.error("Could not create %s for logging", args.logfile.parent, exc_info=True)
            raise SystemExit(1)
    logging.config.dictConfig(loggingConfig(stderrLevel, args.logfile, fileLevel))


def build_args(argv):
    """Return parsed CLI arguments as argparse.Namespace.

    :param argv: CLI arguments
    :type argv: list
    """

    parser = argparse.ArgumentParser(
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        description="Runs the branching process model of an epidemic spreading through a network of locales",
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        type=Path,
        help="YAML file listing the input tables and the output directory",
    )
    parser.add_argument(
        "--alert-policy",
        dest="alert_policy",
        default=None,
        choices=list(alert_policy.ALERT_POLICIES),
        help="Overrides the alert_policy parameter",
    )
    parser.add_argument("--seed", type=int, default=None, help="Overrides the seed parameter")
    parser.add_argument("--trials", type=int, default=None, help="Overrides the trials parameter")
    parser.add_argument(
        "--prefix",
        default=None,
        help="Stem of the output files. Defaults to <policy>-seed-<seed>",
    )
    parser.add_argument(
        "-l",
        "--logfile",
        dest="logfile",
        default=None,
        type=Path,
        help="Path for logging output",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        dest="quiet",
        action="store_true",
        help="Prints only warnings to stderr",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Provide debug output to STDERR"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Defaults to the number of CPUs in the machine",
    )

    return parser.parse_args(argv)


if __name__ == "__main__":
    # The logger name inherits from the package, if called as __main__
    logger = logging.getLogger(f"{__package__}.{__name__}")
    main(sys.argv[1:])
