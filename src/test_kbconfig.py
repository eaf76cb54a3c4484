#!/usr/bin/env python3
# encoding=utf-8

import unittest

import kbconfig
from kbconfig import Parameters, FromEvent, Manipulator, Rule, Profile, KarabinerConfig
from kbconfig import ToEventFactory, ConditionFactory, KarabinerConfigFactory
from kbconfig import toJSON


class TestToEvents (unittest.TestCase):
  def test_key (self):
    ev = ToEventFactory.make_key("left_arrow", ["left_command", "left_option"], repeat=False)
    d = ev.encode_kv()
    self.assertEqual(list(d.keys()), [ 'key_code', 'modifiers', 'repeat' ])
    self.assertEqual(d['modifiers'], [ "left_command", "left_option" ])
    self.assertIs(d['repeat'], False)

    ev = ToEventFactory.make_key(5)
    self.assertEqual(ev.encode_kv(), { 'key_code': "5" })

    self.assertRaises(ValueError, ToEventFactory.make_key, "a", ["super"])

  def test_others (self):
    ev = ToEventFactory.make_shell("open -a 'Finder.app'")
    self.assertEqual(ev.encode_kv(), { 'shell_command': "open -a 'Finder.app'" })
    ev = ToEventFactory.make_set_variable("hyper_sublayer_o", 1)
    self.assertEqual(ev.encode_kv(), { 'set_variable': { 'name': "hyper_sublayer_o", 'value': 1 } })
    ev = ToEventFactory.make_notification("relacon_mode", "Relacon: media")
    self.assertEqual(ev.encode_kv(), { 'set_notification_message': { 'id': "relacon_mode", 'text': "Relacon: media" } })
    ev = ToEventFactory.make_consumer_key("volume_increment", lazy=True)
    self.assertEqual(ev.encode_kv(), { 'consumer_key_code': "volume_increment", 'lazy': True })
    ev = ToEventFactory.make_pointing_button("button1", ["left_command"])
    self.assertEqual(ev.encode_kv(), { 'pointing_button': "button1", 'modifiers': [ "left_command" ] })

  def test_make (self):
    d = { "repeat": False, "key_code": "l", "modifiers": [ "left_command", "left_option" ] }
    ev = ToEventFactory.make(d)
    self.assertIsInstance(ev, kbconfig.ToKey)
    self.assertEqual(ev.encode_kv(), d)
    ev = ToEventFactory.make({ "set_variable": { "name": "x", "value": 0 } })
    self.assertIsInstance(ev, kbconfig.ToSetVariable)
    d = { "set_variable": { "name": "x", "value": 1, "key_up_value": 0 } }
    ev = ToEventFactory.make(d)
    self.assertEqual(ev.key_up_value, 0)
    self.assertEqual(ev.encode_kv(), d)
    # Kinds not modelled are passed through.
    d = { "mouse_key": { "x": 10 } }
    ev = ToEventFactory.make(d)
    self.assertIsInstance(ev, kbconfig.RawToEvent)
    self.assertEqual(ev.encode_kv(), d)
    d = { "set_variable": { "name": "x", "type": "unset" } }
    self.assertEqual(ToEventFactory.make(d).encode_kv(), d)
    # Unknown keys inside a known event are carried.
    d = { "key_code": "a", "description": "note" }
    self.assertEqual(ToEventFactory.make(d).encode_kv(), d)
    self.assertRaises(ValueError, ToEventFactory.make, { "keycode": "a" })
    self.assertRaises(ValueError, ToEventFactory.make, "a")


class TestFromEvent (unittest.TestCase):
  def test_encode (self):
    f = FromEvent(key_code="caps_lock")
    self.assertEqual(f.encode_kv(), { 'key_code': "caps_lock" })
    f = FromEvent(key_code="o", mandatory=kbconfig.HYPER)
    self.assertEqual(f.encode_kv(), {
      'key_code': "o",
      'modifiers': { 'mandatory': [ "left_command", "left_control", "left_shift", "left_option" ] },
      })
    f = FromEvent(pointing_button="button4", optional=["any"])
    self.assertEqual(f.encode_kv(), { 'pointing_button': "button4", 'modifiers': { 'optional': [ "any" ] } })

  def test_exactly_one (self):
    self.assertRaises(ValueError, FromEvent)
    self.assertRaises(ValueError, FromEvent, "a", "button1")

  def test_make (self):
    d = { "consumer_key_code": "eject" }
    self.assertEqual(FromEvent.make(d).encode_kv(), d)
    f = FromEvent.make({ "key_code": "9", "modifiers": { "mandatory": [ "fn", "shift" ] } })
    self.assertEqual(f.mandatory, [ "fn", "shift" ])
    self.assertEqual(f.copy(), f)

  def test_make_raw (self):
    d = { "any": "key_code", "modifiers": { "optional": [ "any" ] } }
    f = FromEvent.make(d)
    self.assertIsInstance(f, kbconfig.RawFromEvent)
    self.assertEqual(f.encode_kv(), d)
    self.assertEqual(f.copy().encode_kv(), d)
    self.assertEqual(f.optional, [ "any" ])
    d = { "simultaneous": [ { "key_code": "j" }, { "key_code": "k" } ],
          "simultaneous_options": { "key_down_order": "strict" } }
    self.assertEqual(FromEvent.make(d).encode_kv(), d)
    self.assertRaises(ValueError, FromEvent.make, { "modifiers": { "optional": [ "any" ] } })


class TestConditions (unittest.TestCase):
  def test_encode (self):
    c = ConditionFactory.make_variable("hyper_sublayer_w", 0)
    self.assertEqual(c.encode_kv(), { 'type': "variable_if", 'name': "hyper_sublayer_w", 'value': 0 })
    c = ConditionFactory.make_variable("x", 1, negate=True)
    self.assertEqual(c.condtype, "variable_unless")
    c = ConditionFactory.make_frontmost_app([ "^com\\.apple\\.Safari$" ])
    self.assertEqual(c.encode_kv(), { 'type': "frontmost_application_if", 'bundle_identifiers': [ "^com\\.apple\\.Safari$" ] })
    c = ConditionFactory.make_device([ { "product_id": 103, "vendor_id": 5426 } ])
    self.assertEqual(c.encode_kv(), { 'type': "device_if", 'identifiers': [ { "product_id": 103, "vendor_id": 5426 } ] })

  def test_make (self):
    d = { "type": "frontmost_application_unless", "bundle_identifiers": [ "^x$" ] }
    c = ConditionFactory.make(d)
    self.assertTrue(c.negate)
    self.assertEqual(c.encode_kv(), d)
    # Types not modelled are passed through.
    d = { "type": "keyboard_type_if", "keyboard_types": [ "ansi" ] }
    self.assertEqual(ConditionFactory.make(d).encode_kv(), d)
    self.assertRaises(ValueError, ConditionFactory.make, { "name": "x" })


class TestParameters (unittest.TestCase):
  def test_constraints (self):
    p = Parameters()
    p["basic.to_if_alone_timeout_milliseconds"] = 300
    self.assertEqual(p.encode_kv(), { "basic.to_if_alone_timeout_milliseconds": 300 })
    with self.assertRaises(ValueError):
      p["basic.to_if_alone_timeout_milliseconds"] = -1
    with self.assertRaises(ValueError):
      p["basic.to_if_alone_timeout_milliseconds"] = 10001
    with self.assertRaises(ValueError):
      p["basic.to_if_alone_timeout_milliseconds"] = "300"
    with self.assertRaises(ValueError):
      p["basic.to_if_alone_timeout_milliseconds"] = True
    with self.assertRaises(ValueError):
      p["basic.no_such_thing"] = 10
    self.assertRaises(ValueError, Parameters, { "basic.to_delayed_action_delay_milliseconds": 20000 })


class TestManipulator (unittest.TestCase):
  def test_encode (self):
    m = Manipulator(FromEvent(key_code="caps_lock"), "Caps Lock -> Hyper Key")
    m.add_events("to", ToEventFactory.make_key("left_shift", ["left_command", "left_control", "left_option"]))
    m.add_events("to_if_alone", { "key_code": "escape" })
    d = m.encode_kv()
    self.assertEqual(list(d.keys()), [ 'description', 'type', 'from', 'to', 'to_if_alone' ])
    self.assertEqual(d['type'], "basic")
    self.assertEqual(d['to_if_alone'], [ { 'key_code': "escape" } ])

  def test_delayed (self):
    m = Manipulator({ "key_code": "a" })
    m.add_events("to_if_invoked", ToEventFactory.make_key("b"))
    m.add_events("to_if_canceled", ToEventFactory.make_key("c"))
    m.add_condition({ "type": "variable_if", "name": "v", "value": 1 })
    m.parameters["basic.to_delayed_action_delay_milliseconds"] = 250
    d = m.encode_kv()
    self.assertEqual(d['to_delayed_action'], {
      'to_if_invoked': [ { 'key_code': "b" } ],
      'to_if_canceled': [ { 'key_code': "c" } ],
      })
    self.assertEqual(d['conditions'], [ { 'type': "variable_if", 'name': "v", 'value': 1 } ])
    self.assertEqual(d['parameters'], { "basic.to_delayed_action_delay_milliseconds": 250 })
    self.assertNotIn('to', d)

  def test_errors (self):
    m = Manipulator(description="orphan")
    self.assertRaises(ValueError, m.encode_kv)
    m = Manipulator({ "key_code": "a" })
    self.assertRaises(ValueError, m.add_events, "to_if_pressed", [])

  def test_make (self):
    d = {
      "description": "Eject to Screenshot",
      "type": "basic",
      "from": { "consumer_key_code": "eject" },
      "to": [ { "key_code": "5", "modifiers": [ "left_command", "left_shift" ] } ],
      }
    m = Manipulator.make(d)
    self.assertEqual(m.encode_kv(), d)


class TestConfig (unittest.TestCase):
  def setUp (self):
    self.existing = {
      "global": { "check_for_updates_on_startup": True },
      "profiles": [
        { "name": "Default",
          "selected": True,
          "complex_modifications": {
            "parameters": { "basic.to_if_alone_timeout_milliseconds": 1000 },
            "rules": [
              { "description": "Eject to Screenshot",
                "manipulators": [
                  { "type": "basic",
                    "from": { "consumer_key_code": "eject" },
                    "to": [ { "key_code": "5", "modifiers": [ "left_command", "left_shift" ] } ] },
                  ] },
              { "description": "Installed by hand",
                "enabled": False,
                "manipulators": [
                  { "type": "basic",
                    "from": { "key_code": "spacebar" },
                    "to": [ { "set_variable": { "name": "space_layer", "value": 1, "key_up_value": 0 } } ] },
                  { "type": "basic",
                    "from": { "any": "key_code", "modifiers": { "optional": [ "any" ] } },
                    "to": [ { "software_function": { "iokit_power_management_sleep_system": {} } } ],
                    "conditions": [ { "type": "variable_if", "name": "space_layer", "value": 1 } ] },
                  { "type": "basic",
                    "from": { "simultaneous": [ { "key_code": "j" }, { "key_code": "k" } ] },
                    "to": [ { "mouse_key": { "vertical_wheel": -64 } },
                           { "select_input_source": { "language": "^en$" } },
                           { "sticky_modifier": { "left_shift": "toggle" } } ] },
                  { "type": "mouse_motion_to_scroll",
                    "from": { "modifiers": { "mandatory": [ "fn" ] } } },
                  ] },
              ] },
          "simple_modifications": [ { "from": { "key_code": "a" }, "to": [ { "key_code": "b" } ] } ],
          "virtual_hid_keyboard": { "keyboard_type_v2": "ansi" },
        },
        ],
      }

  def test_roundtrip_preserves_extra (self):
    cfg = KarabinerConfigFactory.make_from_dict(self.existing)
    self.assertEqual(len(cfg.profiles), 1)
    profile = cfg.get_profile("Default")
    self.assertEqual(len(profile.rules), 2)
    self.assertIn("virtual_hid_keyboard", profile.extra)
    manipulators = profile.rules[1].manipulators
    self.assertEqual(manipulators[0].to[0].key_up_value, 0)
    self.assertIsInstance(manipulators[1].from_event, kbconfig.RawFromEvent)
    self.assertIsInstance(manipulators[3], kbconfig.RawManipulator)
    self.assertEqual(toJSON(cfg), self.existing)
    # Unmodelled keys survive a second pass through the file format.
    self.assertEqual(toJSON(KarabinerConfigFactory.make_from_dict(toJSON(cfg))), self.existing)

  def test_build (self):
    cfg = KarabinerConfig({ "show_in_menu_bar": False })
    profile = cfg.make_profile("Default")
    profile.add_rule(Rule("Eject to Screenshot", [ {
      "from": { "consumer_key_code": "eject" },
      "to": [ { "key_code": "5", "modifiers": [ "left_command", "left_shift" ] } ],
      } ]))
    d = cfg.encode_kv()
    self.assertEqual(d['global'], { "show_in_menu_bar": False })
    self.assertEqual(d['profiles'][0]['name'], "Default")
    self.assertNotIn('selected', d['profiles'][0])
    rules = d['profiles'][0]['complex_modifications']['rules']
    self.assertEqual(rules[0]['manipulators'][0]['type'], "basic")
    self.assertTrue(cfg.dumps().startswith("{\n  \"global\""))


if __name__ == "__main__":
  unittest.main()
