# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Logging bootstrap for the command line.
"""
import logging
from typing import Optional, TextIO

DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def configure_logging(verbose: bool = False, stream: Optional[TextIO] = None,
                      logger: Optional[logging.Logger] = None) -> logging.Logger:
    """
    Sends log records to a stream handler with a plain text format.

    Args:
        verbose: Log at DEBUG instead of INFO.
        stream: Destination stream; stderr when omitted.
        logger: Logger to configure; the root logger when omitted.

    Returns:
        The configured logger.
    """
    target = logger or logging.getLogger()
    for handler in list(target.handlers):
        target.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt="%H:%M:%S"))
    target.addHandler(handler)
    target.setLevel(logging.DEBUG if verbose else logging.INFO)

    # The docker SDK and httpx are chatty at DEBUG
    for noisy in ("urllib3", "docker", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return target
