#!/usr/bin/env python3
# encoding=utf-8

# Configurator module for Karabiner-Elements complex modifications.

# Uses kbjson for reading and writing karabiner.json files.

import kbjson
from collections import OrderedDict



####################
# Helper functions #
####################


def _stringlike (x):
  try: return callable(x.isalpha)
  except AttributeError: return False

def _dictlike (x):
  try: x.items
  except AttributeError: return False
  else: return True


def _listify (x):
  """Accept None, single item, or list-like; yield list."""
  if x is None:
    return []
  if isinstance(x, (list, tuple)):
    return list(x)
  return [ x ]


def toJSON (obj):
  """Recursively encode model objects and containers to plain data."""
  try:
    encoder = obj.encode_kv
  except AttributeError:
    pass
  else:
    return toJSON(encoder())
  if _dictlike(obj):
    retval = OrderedDict()
    for k,v in obj.items():
      retval[k] = toJSON(v)
    return retval
  if isinstance(obj, (list, tuple)):
    return [ toJSON(x) for x in obj ]
  return obj


# Karabiner config keywords.
KB_BASIC = "basic"
KB_FROM = "from"
KB_TO = "to"
KB_TO_IF_ALONE = "to_if_alone"
KB_TO_IF_HELD_DOWN = "to_if_held_down"
KB_TO_AFTER_KEY_UP = "to_after_key_up"
KB_TO_DELAYED_ACTION = "to_delayed_action"
KB_TO_IF_INVOKED = "to_if_invoked"
KB_TO_IF_CANCELED = "to_if_canceled"
KB_CONDITIONS = "conditions"
KB_PARAMETERS = "parameters"
KB_MODIFIERS = "modifiers"
KB_MANDATORY = "mandatory"
KB_OPTIONAL = "optional"

# Event-list slots of a basic manipulator, in output order.
TO_SLOTS = (KB_TO, KB_TO_IF_ALONE, KB_TO_IF_HELD_DOWN, KB_TO_AFTER_KEY_UP)
DELAYED_SLOTS = (KB_TO_IF_INVOKED, KB_TO_IF_CANCELED)

EVENT_CODES = ("key_code", "pointing_button", "consumer_key_code")
TO_FROBS = ("lazy", "repeat", "halt", "hold_down_milliseconds")

# Event kinds read back from existing files but not modelled; kept verbatim.
RAW_TO_EVENTS = (
  "mouse_key", "software_function", "select_input_source", "sticky_modifier",
  "apple_vendor_keyboard_key_code", "apple_vendor_top_case_key_code",
  )
RAW_FROM_EVENTS = (
  "any", "simultaneous",
  "apple_vendor_keyboard_key_code", "apple_vendor_top_case_key_code",
  )

MODIFIERS = set([
  "any",
  "caps_lock",
  "command", "control", "option", "shift", "fn",
  "left_command", "left_control", "left_option", "left_shift",
  "right_command", "right_control", "right_option", "right_shift",
  "left_alt", "left_gui", "right_alt", "right_gui",
  ])

# Left-hand Hyper: all four modifiers.
HYPER = [ "left_command", "left_control", "left_shift", "left_option" ]
RIGHT_HYPER = [ "right_command", "right_control", "right_shift", "right_option" ]


def check_modifiers (mods):
  for m in mods:
    if not m in MODIFIERS:
      raise ValueError("Unknown modifier '{}'".format(m))
  return list(mods)




##################################


class Parameters (OrderedDict):
  """Timing parameters for a manipulator or complex_modifications.

Constraints on values:
  Tuples indicate an integer range, such that tuple[0] <= value <= tuple[1]
"""
  _Constraints = {
    "basic.simultaneous_threshold_milliseconds": (0, 10000),
    "basic.to_delayed_action_delay_milliseconds": (0, 10000),
    "basic.to_if_alone_timeout_milliseconds": (0, 10000),
    "basic.to_if_held_down_threshold_milliseconds": (0, 10000),
    "mouse_motion_to_scroll.speed": (0, 10000),
    }

  def __init__ (self, copyfrom=None):
    OrderedDict.__init__(self)
    if copyfrom:
      for k,v in copyfrom.items():
        self[k] = v

  def __setitem__ (self, k, val):
    constraint = self._Constraints.get(k, None)
    if constraint is None:
      raise ValueError("Unknown parameter '{}'".format(k))
    if isinstance(val, bool) or not isinstance(val, int):
      raise ValueError("Parameter {} must be integer (got {!r})".format(k, val))
    lower, upper = constraint
    if (val < lower) or (upper < val):
      raise ValueError("Value {} not within constraints {}".format(val, constraint))
    OrderedDict.__setitem__(self, k, val)

  def encode_kv (self):
    return OrderedDict(self.items())



##########################
# Substantiative objects #
##########################


# To-events: what the daemon posts when a manipulator fires.

class ToEventBase (object):
  """One event in a list of 'to' events."""
  def __init__ (self, lazy=None, repeat=None, halt=None, hold_down_milliseconds=None, extra=None):
    self.lazy = lazy
    self.repeat = repeat
    self.halt = halt
    self.hold_down_milliseconds = hold_down_milliseconds
    # Keys of a read-back event that are not modelled.
    self.extra = OrderedDict(extra) if extra else OrderedDict()

  def _encode_event (self):
    """Override: return list of pairs for the event-specific part."""
    return []

  def encode_kv (self):
    kv = OrderedDict(self._encode_event())
    if self.lazy is not None:
      kv['lazy'] = bool(self.lazy)
    if self.repeat is not None:
      kv['repeat'] = bool(self.repeat)
    if self.halt is not None:
      kv['halt'] = bool(self.halt)
    if self.hold_down_milliseconds is not None:
      kv['hold_down_milliseconds'] = int(self.hold_down_milliseconds)
    kv.update(self.extra)
    return kv

  def __eq__ (self, other):
    try:
      return self.encode_kv() == other.encode_kv()
    except AttributeError:
      return NotImplemented

  def __repr__ (self):
    return "{}({!r})".format(self.__class__.__name__, dict(self.encode_kv()))


class ToKey (ToEventBase):
  def __init__ (self, key_code, modifiers=None, **kwargs):
    ToEventBase.__init__(self, **kwargs)
    self.key_code = str(key_code)
    self.modifiers = check_modifiers(_listify(modifiers))
  def _encode_event (self):
    lop = [ ('key_code', self.key_code) ]
    if self.modifiers:
      lop.append( (KB_MODIFIERS, list(self.modifiers)) )
    return lop


class ToPointingButton (ToEventBase):
  def __init__ (self, button, modifiers=None, **kwargs):
    ToEventBase.__init__(self, **kwargs)
    self.button = str(button)
    self.modifiers = check_modifiers(_listify(modifiers))
  def _encode_event (self):
    lop = [ ('pointing_button', self.button) ]
    if self.modifiers:
      lop.append( (KB_MODIFIERS, list(self.modifiers)) )
    return lop


class ToConsumerKey (ToEventBase):
  def __init__ (self, consumer_key_code, **kwargs):
    ToEventBase.__init__(self, **kwargs)
    self.consumer_key_code = str(consumer_key_code)
  def _encode_event (self):
    return [ ('consumer_key_code', self.consumer_key_code) ]


class ToShellCommand (ToEventBase):
  def __init__ (self, command, **kwargs):
    ToEventBase.__init__(self, **kwargs)
    self.command = command
  def _encode_event (self):
    return [ ('shell_command', self.command) ]


class ToSetVariable (ToEventBase):
  """set_variable; key_up_value is applied when the key is released."""
  def __init__ (self, name, value, key_up_value=None, **kwargs):
    ToEventBase.__init__(self, **kwargs)
    self.name = name
    self.value = value
    self.key_up_value = key_up_value
  def _encode_event (self):
    kv = OrderedDict()
    kv['name'] = self.name
    kv['value'] = self.value
    if self.key_up_value is not None:
      kv['key_up_value'] = self.key_up_value
    return [ ('set_variable', kv) ]


class ToNotification (ToEventBase):
  """set_notification_message; empty text hides the message."""
  def __init__ (self, ident, text, **kwargs):
    ToEventBase.__init__(self, **kwargs)
    self.ident = ident
    self.text = text
  def _encode_event (self):
    kv = OrderedDict()
    kv['id'] = self.ident
    kv['text'] = self.text
    return [ ('set_notification_message', kv) ]


class RawToEvent (ToEventBase):
  """To-event kinds not modelled here, kept verbatim."""
  def __init__ (self, py_dict):
    ToEventBase.__init__(self)
    self.py_dict = OrderedDict(py_dict)
  def encode_kv (self):
    return OrderedDict(self.py_dict)


class ToEventFactory (object):
  @staticmethod
  def make_key (key_code, modifiers=None, **kwargs):
    return ToKey(key_code, modifiers, **kwargs)
  @staticmethod
  def make_pointing_button (button, modifiers=None, **kwargs):
    return ToPointingButton(button, modifiers, **kwargs)
  @staticmethod
  def make_consumer_key (code, **kwargs):
    return ToConsumerKey(code, **kwargs)
  @staticmethod
  def make_shell (command, **kwargs):
    return ToShellCommand(command, **kwargs)
  @staticmethod
  def make_set_variable (name, value, key_up_value=None, **kwargs):
    return ToSetVariable(name, value, key_up_value, **kwargs)
  @staticmethod
  def make_notification (ident, text, **kwargs):
    return ToNotification(ident, text, **kwargs)

  @staticmethod
  def make (py_dict):
    """Build to-event from its JSON form."""
    if isinstance(py_dict, ToEventBase):
      return py_dict
    if not _dictlike(py_dict):
      raise ValueError("To-event must be a mapping (got {!r})".format(py_dict))
    if any(k in py_dict for k in RAW_TO_EVENTS):
      return RawToEvent(py_dict)

    def kwargs_except (*known):
      kwargs = {}
      extra = OrderedDict()
      for k,v in py_dict.items():
        if k in TO_FROBS:
          kwargs[k] = v
        elif k not in known:
          extra[k] = v
      kwargs['extra'] = extra
      return kwargs

    if 'key_code' in py_dict:
      return ToKey(py_dict['key_code'], py_dict.get(KB_MODIFIERS), **kwargs_except('key_code', KB_MODIFIERS))
    elif 'pointing_button' in py_dict:
      return ToPointingButton(py_dict['pointing_button'], py_dict.get(KB_MODIFIERS), **kwargs_except('pointing_button', KB_MODIFIERS))
    elif 'consumer_key_code' in py_dict:
      return ToConsumerKey(py_dict['consumer_key_code'], **kwargs_except('consumer_key_code'))
    elif 'shell_command' in py_dict:
      return ToShellCommand(py_dict['shell_command'], **kwargs_except('shell_command'))
    elif 'set_variable' in py_dict:
      sv = py_dict['set_variable']
      # Other shapes (e.g. "type": "unset") pass through whole.
      if set(sv.keys()) - set(['name', 'value', 'key_up_value']) or 'value' not in sv:
        return RawToEvent(py_dict)
      return ToSetVariable(sv['name'], sv['value'], sv.get('key_up_value'), **kwargs_except('set_variable'))
    elif 'set_notification_message' in py_dict:
      nm = py_dict['set_notification_message']
      if set(nm.keys()) != set(['id', 'text']):
        return RawToEvent(py_dict)
      return ToNotification(nm['id'], nm['text'], **kwargs_except('set_notification_message'))
    raise ValueError("Unknown to-event {!r}".format(py_dict))


class FromEvent (object):
  """The triggering input of a manipulator."""
  def __init__ (self, key_code=None, pointing_button=None, consumer_key_code=None, mandatory=None, optional=None, extra=None):
    given = [ x for x in (key_code, pointing_button, consumer_key_code) if x is not None ]
    if len(given) != 1:
      raise ValueError("FromEvent needs exactly one event code (got {})".format(len(given)))
    self.key_code = str(key_code) if key_code is not None else None
    self.pointing_button = pointing_button
    self.consumer_key_code = consumer_key_code
    self.mandatory = check_modifiers(_listify(mandatory))
    self.optional = check_modifiers(_listify(optional))
    self.extra = OrderedDict(extra) if extra else OrderedDict()

  def encode_kv (self):
    kv = OrderedDict()
    if self.key_code is not None:
      kv['key_code'] = self.key_code
    elif self.pointing_button is not None:
      kv['pointing_button'] = self.pointing_button
    else:
      kv['consumer_key_code'] = self.consumer_key_code
    if self.mandatory or self.optional:
      mods = OrderedDict()
      if self.mandatory:
        mods[KB_MANDATORY] = list(self.mandatory)
      if self.optional:
        mods[KB_OPTIONAL] = list(self.optional)
      kv[KB_MODIFIERS] = mods
    kv.update(self.extra)
    return kv

  def copy (self):
    return FromEvent(self.key_code, self.pointing_button, self.consumer_key_code, self.mandatory, self.optional, self.extra)

  def __eq__ (self, other):
    try:
      return self.encode_kv() == other.encode_kv()
    except AttributeError:
      return NotImplemented

  def __repr__ (self):
    return "{}({!r})".format(self.__class__.__name__, dict(self.encode_kv()))

  @staticmethod
  def make (py_dict):
    if isinstance(py_dict, FromEvent):
      return py_dict
    if not _dictlike(py_dict):
      raise ValueError("From-event must be a mapping (got {!r})".format(py_dict))
    if any(k in py_dict for k in RAW_FROM_EVENTS):
      return RawFromEvent(py_dict)
    mods = py_dict.get(KB_MODIFIERS, None) or {}
    extra = OrderedDict((k,v) for k,v in py_dict.items() if k not in EVENT_CODES + (KB_MODIFIERS,))
    return FromEvent(
      py_dict.get('key_code'),
      py_dict.get('pointing_button'),
      py_dict.get('consumer_key_code'),
      mods.get(KB_MANDATORY),
      mods.get(KB_OPTIONAL),
      extra)


class RawFromEvent (FromEvent):
  """From-events not modelled here ("any", "simultaneous", ...), kept verbatim."""
  def __init__ (self, py_dict):
    self.py_dict = OrderedDict(py_dict)
    self.key_code = py_dict.get('key_code')
    self.pointing_button = py_dict.get('pointing_button')
    self.consumer_key_code = py_dict.get('consumer_key_code')
    mods = py_dict.get(KB_MODIFIERS, None) or {}
    self.mandatory = _listify(mods.get(KB_MANDATORY))
    self.optional = _listify(mods.get(KB_OPTIONAL))
    self.extra = OrderedDict()

  def encode_kv (self):
    return OrderedDict(self.py_dict)

  def copy (self):
    return RawFromEvent(self.py_dict)



# Conditions.

class ConditionBase (object):
  TYPE_IF = TYPE_UNLESS = None
  def __init__ (self, negate=False):
    self.negate = negate
  @property
  def condtype (self):
    return self.TYPE_UNLESS if self.negate else self.TYPE_IF
  def _encode_cond (self):
    return []
  def encode_kv (self):
    kv = OrderedDict()
    kv['type'] = self.condtype
    kv.update(self._encode_cond())
    return kv
  def __eq__ (self, other):
    try:
      return self.encode_kv() == other.encode_kv()
    except AttributeError:
      return NotImplemented
  def __repr__ (self):
    return "{}({!r})".format(self.__class__.__name__, dict(self.encode_kv()))


class VariableCondition (ConditionBase):
  TYPE_IF = "variable_if"
  TYPE_UNLESS = "variable_unless"
  def __init__ (self, name, value, negate=False):
    ConditionBase.__init__(self, negate)
    self.name = name
    self.value = value
  def _encode_cond (self):
    return [ ('name', self.name), ('value', self.value) ]


class FrontmostAppCondition (ConditionBase):
  TYPE_IF = "frontmost_application_if"
  TYPE_UNLESS = "frontmost_application_unless"
  def __init__ (self, bundle_identifiers=None, file_paths=None, negate=False):
    ConditionBase.__init__(self, negate)
    self.bundle_identifiers = _listify(bundle_identifiers)
    self.file_paths = _listify(file_paths)
  def _encode_cond (self):
    lop = []
    if self.bundle_identifiers:
      lop.append( ('bundle_identifiers', list(self.bundle_identifiers)) )
    if self.file_paths:
      lop.append( ('file_paths', list(self.file_paths)) )
    return lop


class DeviceCondition (ConditionBase):
  TYPE_IF = "device_if"
  TYPE_UNLESS = "device_unless"
  def __init__ (self, identifiers, negate=False):
    ConditionBase.__init__(self, negate)
    self.identifiers = [ OrderedDict(x) for x in _listify(identifiers) ]
  def _encode_cond (self):
    return [ ('identifiers', [ OrderedDict(x) for x in self.identifiers ]) ]


class RawCondition (ConditionBase):
  """Condition types not modelled here, kept verbatim."""
  def __init__ (self, py_dict):
    ConditionBase.__init__(self)
    self.py_dict = OrderedDict(py_dict)
  def encode_kv (self):
    return OrderedDict(self.py_dict)


class ConditionFactory (object):
  @staticmethod
  def make_variable (name, value, negate=False):
    return VariableCondition(name, value, negate)
  @staticmethod
  def make_frontmost_app (bundle_identifiers, negate=False):
    return FrontmostAppCondition(bundle_identifiers, None, negate)
  @staticmethod
  def make_device (identifiers, negate=False):
    return DeviceCondition(identifiers, negate)

  @staticmethod
  def make (py_dict):
    if isinstance(py_dict, ConditionBase):
      return py_dict
    condtype = py_dict.get('type', None)
    for cls in (VariableCondition, FrontmostAppCondition, DeviceCondition):
      if condtype in (cls.TYPE_IF, cls.TYPE_UNLESS):
        negate = (condtype == cls.TYPE_UNLESS)
        break
    else:
      if condtype is None:
        raise ValueError("Condition without type {!r}".format(py_dict))
      return RawCondition(py_dict)
    if cls is VariableCondition:
      return VariableCondition(py_dict['name'], py_dict['value'], negate)
    elif cls is FrontmostAppCondition:
      return FrontmostAppCondition(py_dict.get('bundle_identifiers'), py_dict.get('file_paths'), negate)
    return DeviceCondition(py_dict.get('identifiers'), negate)




class Manipulator (object):
  """A basic manipulator: one trigger, its transformations, and conditions.

Event-list slots:
  to : posted on key down
  to_if_alone : posted on key up if no other key was pressed meanwhile
  to_if_held_down : posted when held past the held-down threshold
  to_after_key_up : posted after key up
  to_delayed_action : to_if_invoked / to_if_canceled, after a delay
"""
  def __init__ (self, from_event=None, description=None, conditions=None, parameters=None, **kwargs):
    self.from_event = FromEvent.make(from_event) if from_event is not None else None
    self.description = description
    self.slots = OrderedDict()
    for slot in TO_SLOTS:
      self.slots[slot] = []
    self.delayed = OrderedDict()
    for slot in DELAYED_SLOTS:
      self.delayed[slot] = []
    self.conditions = []
    self.parameters = Parameters()
    self.extra = OrderedDict()

    for slot in TO_SLOTS:
      if slot in kwargs:
        self.add_events(slot, kwargs[slot])
    if KB_TO_DELAYED_ACTION in kwargs:
      for slot, events in kwargs[KB_TO_DELAYED_ACTION].items():
        self.add_events(slot, events)
    for cond in _listify(conditions):
      self.add_condition(cond)
    if parameters:
      for k,v in parameters.items():
        self.parameters[k] = v

  def add_events (self, slot, events):
    """Append to-events (objects or JSON dicts) to 'slot'."""
    evlist = [ ToEventFactory.make(ev) for ev in _listify(events) ]
    if slot in self.slots:
      self.slots[slot].extend(evlist)
    elif slot in self.delayed:
      self.delayed[slot].extend(evlist)
    else:
      raise ValueError("Unknown event slot '{}'".format(slot))
    return evlist

  def add_condition (self, cond):
    condobj = ConditionFactory.make(cond)
    self.conditions.append(condobj)
    return condobj

  @property
  def to (self):
    return self.slots[KB_TO]

  def encode_kv (self):
    if self.from_event is None:
      raise ValueError("Manipulator {!r} has no 'from' event".format(self.description))
    kv = OrderedDict()
    if self.description:
      kv['description'] = self.description
    kv['type'] = KB_BASIC
    kv[KB_FROM] = self.from_event.encode_kv()
    for slot, events in self.slots.items():
      if events:
        kv[slot] = [ ev.encode_kv() for ev in events ]
    if any(self.delayed.values()):
      delayed = OrderedDict()
      for slot, events in self.delayed.items():
        if events:
          delayed[slot] = [ ev.encode_kv() for ev in events ]
      kv[KB_TO_DELAYED_ACTION] = delayed
    if self.conditions:
      kv[KB_CONDITIONS] = [ c.encode_kv() for c in self.conditions ]
    if self.parameters:
      kv[KB_PARAMETERS] = self.parameters.encode_kv()
    kv.update(self.extra)
    return kv

  KNOWN_KEYS = ('description', 'type', KB_FROM, KB_TO_DELAYED_ACTION, KB_CONDITIONS, KB_PARAMETERS) + TO_SLOTS

  @staticmethod
  def make (py_dict):
    if isinstance(py_dict, Manipulator):
      return py_dict
    if py_dict.get('type', KB_BASIC) != KB_BASIC:
      return RawManipulator(py_dict)
    kwargs = {}
    for slot in TO_SLOTS + (KB_TO_DELAYED_ACTION,):
      if slot in py_dict:
        kwargs[slot] = py_dict[slot]
    m = Manipulator(
      py_dict.get(KB_FROM),
      py_dict.get('description'),
      py_dict.get(KB_CONDITIONS),
      py_dict.get(KB_PARAMETERS),
      **kwargs)
    for k,v in py_dict.items():
      if k not in Manipulator.KNOWN_KEYS:
        m.extra[k] = v
    return m


class RawManipulator (Manipulator):
  """Manipulator types other than basic (e.g. mouse_motion_to_scroll), kept verbatim."""
  def __init__ (self, py_dict):
    Manipulator.__init__(self, description=py_dict.get('description'))
    self.py_dict = OrderedDict(py_dict)
  def encode_kv (self):
    return OrderedDict(self.py_dict)


class Rule (object):
  """A titled group of manipulators, as listed in the daemon's UI."""
  def __init__ (self, description, py_manipulators=None, **kwargs):
    self.description = description
    self.manipulators = []
    self.extra = OrderedDict()
    if py_manipulators:
      for m in py_manipulators:
        self.add_manipulator(m)
    elif 'manipulators' in kwargs:
      for m in kwargs['manipulators']:
        self.add_manipulator(m)
  def add_manipulator (self, m):
    m = Manipulator.make(m)
    self.manipulators.append(m)
    return m
  def encode_kv (self):
    kv = OrderedDict()
    kv['description'] = self.description
    kv['manipulators'] = [ m.encode_kv() for m in self.manipulators ]
    kv.update(self.extra)
    return kv
  def __repr__ (self):
    return "{}(description={!r}, manipulators=<{}>)".format(
      self.__class__.__name__,
      self.description,
      len(self.manipulators))


class Profile (object):
  """One profile; only complex_modifications is modelled.
Other profile keys (devices, simple_modifications, ...) are carried verbatim.
"""
  def __init__ (self, name="Default", selected=None, py_rules=None, parameters=None, extra=None):
    self.name = name
    self.selected = selected
    self.rules = []
    self.parameters = Parameters(parameters)
    self.extra = OrderedDict(extra) if extra else OrderedDict()
    for r in _listify(py_rules):
      self.add_rule(r)

  def add_rule (self, rule):
    if not isinstance(rule, Rule):
      rule = Rule(rule.get('description'), rule.get('manipulators'))
    self.rules.append(rule)
    return rule

  def encode_kv (self):
    kv = OrderedDict()
    kv['name'] = self.name
    if self.selected is not None:
      kv['selected'] = bool(self.selected)
    complex_mods = OrderedDict()
    if self.parameters:
      complex_mods['parameters'] = self.parameters.encode_kv()
    complex_mods['rules'] = [ r.encode_kv() for r in self.rules ]
    kv['complex_modifications'] = complex_mods
    for k,v in self.extra.items():
      kv[k] = v
    return kv


class KarabinerConfig (object):
  """Toplevel object representing karabiner.json.
See KarabinerConfigFactory for instantiating from a dict.
"""
  def __init__ (self, global_settings=None, py_profiles=None):
    self.global_settings = OrderedDict(global_settings) if global_settings else OrderedDict()
    self.profiles = []
    for p in _listify(py_profiles):
      self.profiles.append(p)

  def make_profile (self, name="Default", **kwargs):
    profile = Profile(name, **kwargs)
    self.profiles.append(profile)
    return profile

  def get_profile (self, name):
    for p in self.profiles:
      if p.name == name:
        return p
    return None

  def encode_kv (self):
    kv = OrderedDict()
    if self.global_settings:
      kv['global'] = OrderedDict(self.global_settings)
    kv['profiles'] = [ p.encode_kv() for p in self.profiles ]
    return kv

  def dumps (self):
    return kbjson.dumps(self.encode_kv())




##############################################
# Factory class                              #
# Instantiate KarabinerConfig from a dict.   #
##############################################

class KarabinerConfigFactory (object):
  """Factory class to create instances of KarabinerConfig."""
  @staticmethod
  def make_profile (py_dict):
    extra = OrderedDict()
    for k,v in py_dict.items():
      if k not in ('name', 'selected', 'complex_modifications'):
        extra[k] = v
    complex_mods = py_dict.get('complex_modifications', None) or {}
    rules = []
    for r in complex_mods.get('rules', []):
      rule = Rule(r.get('description'), r.get('manipulators'))
      for k,v in r.items():
        if k not in ('description', 'manipulators'):
          rule.extra[k] = v
      rules.append(rule)
    return Profile(py_dict.get('name', "Default"),
                   py_dict.get('selected'),
                   rules,
                   complex_mods.get('parameters'),
                   extra)

  @staticmethod
  def make_from_dict (pydict):
    profiles = [ KarabinerConfigFactory.make_profile(p) for p in pydict.get('profiles', []) ]
    return KarabinerConfig(pydict.get('global'), profiles)
