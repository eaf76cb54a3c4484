#!/usr/bin/env python3

# Logging for kbmaker: structlog events rendered by a stdlib handler on stderr,
# so stdout stays free for generated JSON.

import logging
import sys

import structlog


LOGGER_NAME = "kbmaker"


def configure_logging (verbose=False, log_json=False):
  """Route structlog through stdlib logging.

verbose: DEBUG for kbmaker loggers instead of INFO.
log_json: one JSON object per line instead of console lines.
"""
  stamped = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    ]

  if log_json:
    renderer = structlog.processors.JSONRenderer()
  else:
    renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

  structlog.configure(
    processors=stamped + [ structlog.stdlib.ProcessorFormatter.wrap_for_formatter ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=False,
    )

  handler = logging.StreamHandler(sys.stderr)
  handler.setFormatter(structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=stamped,
    processors=[
      structlog.stdlib.ProcessorFormatter.remove_processors_meta,
      renderer,
      ],
    ))

  # Other libraries: warnings only.
  root_logger = logging.getLogger()
  root_logger.handlers[:] = [ handler ]
  root_logger.setLevel(logging.WARNING)

  logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG if verbose else logging.INFO)


def get_logger (name=None):
  if name:
    return structlog.get_logger("{}.{}".format(LOGGER_NAME, name))
  return structlog.get_logger(LOGGER_NAME)
