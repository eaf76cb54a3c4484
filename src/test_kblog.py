#!/usr/bin/env python3

import logging
import unittest

import kblog


class TestConfigure (unittest.TestCase):
  def setUp (self):
    self.root = logging.getLogger()
    self.saved = (list(self.root.handlers), self.root.level, logging.getLogger(kblog.LOGGER_NAME).level)

  def tearDown (self):
    handlers, level, ownlevel = self.saved
    self.root.handlers[:] = handlers
    self.root.setLevel(level)
    logging.getLogger(kblog.LOGGER_NAME).setLevel(ownlevel)

  def test_levels (self):
    kblog.configure_logging()
    self.assertEqual(self.root.level, logging.WARNING)
    self.assertEqual(len(self.root.handlers), 1)
    self.assertEqual(logging.getLogger(kblog.LOGGER_NAME).level, logging.INFO)

    kblog.configure_logging(verbose=True, log_json=True)
    self.assertEqual(len(self.root.handlers), 1)
    self.assertEqual(logging.getLogger(kblog.LOGGER_NAME).level, logging.DEBUG)

  def test_names (self):
    kblog.configure_logging()
    log = kblog.get_logger("maker")
    self.assertEqual(log.name, "kbmaker.maker")
    self.assertEqual(kblog.get_logger().name, "kbmaker")


if __name__ == "__main__":
  unittest.main()
