import logging
import os
from typing import Union

from gbm_engine.utils.utils import calculate_progress

DATE_FORMAT = "%Y-%m-%d %H:%M"


class GBMLogger:
    """Logger for boosting runs."""

    def __init__(
        self,
        run_id: Union[int, str] = 0,
        verbose: int = 0,
        output_path: Union[str, None] = None,
    ):
        """Initialize the logger.

        :param run_id: The id of the run, shown in every message.
        :param verbose: The verbosity level. 0 is silent, 1 logs the deviance
            table, 2 also logs progress of each run.
        :param output_path: Directory to also write the log file "log.txt" to.
        """
        self.verbose = verbose
        self.progress = 0
        self.logger = logging.Logger("gbm_engine")
        self.logger.setLevel(logging.INFO)
        self.logger.addHandler(logging.StreamHandler())
        formatter = logging.Formatter(
            f"[%(asctime)s][run_{run_id}][%(message)s]", datefmt=DATE_FORMAT
        )
        self.logger.handlers[0].setFormatter(formatter)

        if output_path is not None:
            log_file = os.path.join(output_path, "log.txt")
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    def log(self, msg: str, verbose: int = 0):
        """Log a message if the verbosity level allows it.

        :param msg: The message.
        :param verbose: The verbosity level at which the message is shown.
        """
        if verbose <= self.verbose:
            self.logger.info(msg)

    def log_progress(self, step: int, total_steps: int, verbose: int = 0):
        """Log the progress in steps of ten percent.

        :param step: The current step.
        :param total_steps: The total number of steps.
        :param verbose: The verbosity level at which the progress is shown.
        """
        new_progress = calculate_progress(step=step, total_steps=total_steps)
        if new_progress > self.progress:
            self.progress = new_progress
            self.log(f"{int(100 * new_progress)}% done", verbose=verbose)

    def reset_progress(self):
        self.progress = 0

    def _set_format(self, format_msg: str):
        formatter = logging.Formatter(format_msg, datefmt=DATE_FORMAT)
        for handler in self.logger.handlers:
            handler.setFormatter(formatter)

    def append_format_level(self, level_msg: str):
        """Append a level tag to the message format.

        :param level_msg: The level to append to the message.
        """
        formatter = self.logger.handlers[0].formatter
        format_msg = formatter._fmt.split("[%(message)s]")[0]
        self._set_format(format_msg + f"[{level_msg}][%(message)s]")

    def remove_format_level(self):
        """Remove the last level tag from the message format."""
        # Split on the second to last occurence of a bracket
        format_msg = self.logger.handlers[0].formatter._fmt.rsplit("[", 2)[0]
        self._set_format(format_msg + "[%(message)s]")
