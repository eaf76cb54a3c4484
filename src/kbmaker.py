#!/usr/bin/env python3

# Given a dict describing a remapping configuration,
# generate KarabinerConfig and JSON.

import os
import re
import sys, argparse
from collections import OrderedDict

import yaml

import kbconfig, kbjson, kblog
from kbconfig import (
  FromEvent, Manipulator, Rule, Profile, KarabinerConfig,
  ToEventBase, ToEventFactory, ConditionBase, ConditionFactory,
  HYPER, RIGHT_HYPER,
  KB_TO, KB_TO_IF_ALONE, KB_TO_IF_HELD_DOWN, KB_TO_AFTER_KEY_UP,
  KB_TO_DELAYED_ACTION, KB_TO_IF_INVOKED, KB_TO_IF_CANCELED,
  )

log = kblog.get_logger("maker")

r"""
cfg:
  title: <profile name>
  global: { show_in_menu_bar: false }
  parameters: { <parameter>: <ms> }
  aliases: { <name>: <tospec> }
  apps: { <name>: [ <bundle id regex> ] }
  devices: { <name>: { vendor_id: N, product_id: N } }
  rules[]:
    description: ...
    when: [ <condspec> ]
    manipulators[]:
      from: <fromspec>
      to: <tospec>+
  hyper:
    <key>: <command>                 # Hyper + key
    <key>: { <key>: <command> }      # Hyper + key sublayer
  right_hyper: (same as hyper)
  trackball:
    name, device, threshold, hold_threshold, combo_button, mode_button, modes
    buttons[]:
      name, event, tap, double, hold, combo, modes: { <mode>: <tospec> }

fromspec:
  '+'-joined tokens; the last is the event, others are modifiers.
  key, <key> : key_code
  [button1] : pointing_button
  (eject) : consumer_key_code
  modifier prefix '?' : optional instead of mandatory
  modifier aliases: cmd ctrl opt alt; hyper, rhyper (all four, left/right)

tospec: [signal] sym+ [frob]* [#label]
  signal:
    (none), / : to
    = : to_if_alone
    _ : to_if_held_down
    - : to_after_key_up
    : : to_delayed_action.to_if_invoked
    % : to_delayed_action.to_if_canceled
  sym:
    <mods+key> : key_code with modifiers
    [mods+button1] : pointing_button
    (volume_increment) : consumer_key_code
    {open -a Foo.app} : shell_command (braces must balance)
    $name=value : set_variable
    'text' : set_notification_message
  frob:
    * : lazy
    ! : repeat off
    ^ : halt
    ~N : hold_down_milliseconds N
  label: '#' words, '#' between words reads as a space.

  Several tospecs in one string are separated by whitespace.
  $alias or ${alias} inserts a tospec from 'aliases'.

command (sublayer entry):
  <tospec>+
  app:<Application Name>
  open:<target>
  { to: ..., description: ..., when: [...], to_if_alone: ..., ... }
  [ <command>, <command> ]        # conditional entries; first match wins

condspec:
  app:<name>  device:<name>  var:<name>=<value>
  '!' prefix for the _unless form.
"""


DOUBLE_CLICK_MS = 250
HOLD_MS = 400
NOTIFICATION_ID = "kbmaker"


def _stringlike (x):
  try: x.isalpha
  except AttributeError: return False
  else: return True

def _dictlike (x):
  try: x.items
  except AttributeError: return False
  else: return True

def _scalar (s):
  """Variable values: integers when they look like integers."""
  try:
    return int(s)
  except ValueError:
    return s

def _keyname (k):
  if isinstance(k, bool):
    raise ValueError("Key {!r} read as boolean; quote it".format(k))
  return str(k)

def _mapping (v, what):
  """Section value as a mapping; empty sections read as None."""
  if v is None:
    return OrderedDict()
  if not _dictlike(v):
    raise ValueError("{} must be a mapping (got {!r})".format(what, v))
  return v

def _sequence (v, what):
  if v is None:
    return []
  if not isinstance(v, (list, tuple)):
    raise ValueError("{} must be a list (got {!r})".format(what, v))
  return v

def _sanitize (s):
  s = re.sub(r"[^a-z0-9]+", "_", str(s).lower())
  return s.strip("_") or "x"


MODIFIER_ALIASES = {
  "cmd": [ "command" ],
  "ctrl": [ "control" ],
  "opt": [ "option" ],
  "alt": [ "option" ],
  "lcmd": [ "left_command" ],
  "lctrl": [ "left_control" ],
  "lopt": [ "left_option" ],
  "lshift": [ "left_shift" ],
  "rcmd": [ "right_command" ],
  "rctrl": [ "right_control" ],
  "ropt": [ "right_option" ],
  "rshift": [ "right_shift" ],
  "hyper": HYPER,
  "rhyper": RIGHT_HYPER,
  }

def expand_modifier (name):
  if name in MODIFIER_ALIASES:
    return list(MODIFIER_ALIASES[name])
  if name in kbconfig.MODIFIERS:
    return [ name ]
  raise ValueError("Unknown modifier '{}'".format(name))


def split_specs (s):
  """Split a string of tospecs on whitespace outside braces and quotes."""
  words = []
  cur = []
  depth = 0
  quoted = False
  for ch in s:
    if depth == 0 and ch == "'":
      quoted = not quoted
    elif not quoted and ch == '{':
      depth += 1
    elif not quoted and ch == '}' and depth > 0:
      depth -= 1
    if ch.isspace() and depth == 0 and not quoted:
      if cur:
        words.append(''.join(cur))
        cur = []
      continue
    cur.append(ch)
  if depth or quoted:
    raise ValueError("Unbalanced braces or quotes in '{}'".format(s))
  if cur:
    words.append(''.join(cur))
  return words


def _match_brace (s, start):
  depth = 0
  for i in range(start, len(s)):
    if s[i] == '{':
      depth += 1
    elif s[i] == '}':
      depth -= 1
      if depth == 0:
        return i
  return -1




class Fromspec (object):
  """'from' shorthand: modifiers and one triggering event."""
  REGEX_EVENT = r"(<[A-Za-z0-9_]+>|\[[A-Za-z0-9_]+\]|\([A-Za-z0-9_]+\)|[A-Za-z0-9_]+)$"

  def __init__ (self, evtype=None, evcode=None, mandatory=None, optional=None):
    self.evtype = evtype      # "key", "button", "consumer"
    self.evcode = evcode
    self.mandatory = mandatory or []
    self.optional = optional or []

  def __str__ (self):
    parts = list(self.mandatory)
    parts.extend([ "?" + m for m in self.optional ])
    if self.evtype == "button":
      parts.append("[{}]".format(self.evcode))
    elif self.evtype == "consumer":
      parts.append("({})".format(self.evcode))
    else:
      parts.append(self.evcode)
    return "+".join(parts)

  def __repr__ (self):
    return "{}(evtype={!r}, evcode={!r}, mandatory={!r}, optional={!r})".format(
      self.__class__.__name__,
      self.evtype,
      self.evcode,
      self.mandatory,
      self.optional)

  @staticmethod
  def _parse (s):
    words = [ w.strip() for w in s.split('+') ]
    if not all(words):
      return None
    evspec = words[-1]
    if not re.match(Fromspec.REGEX_EVENT, evspec):
      return None
    if evspec[0] == '<':
      evtype, evcode = "key", evspec[1:-1]
    elif evspec[0] == '[':
      evtype, evcode = "button", evspec[1:-1]
    elif evspec[0] == '(':
      evtype, evcode = "consumer", evspec[1:-1]
    else:
      evtype, evcode = "key", evspec
    mandatory, optional = [], []
    for w in words[:-1]:
      if w[0] == '?':
        optional.extend(expand_modifier(w[1:]))
      else:
        mandatory.extend(expand_modifier(w))
    return (evtype, evcode, mandatory, optional)

  @staticmethod
  def parse (s):
    parsed = Fromspec._parse(str(s))
    if parsed is None:
      raise ValueError("Malformed from-spec '{}'".format(s))
    return Fromspec(*parsed)

  def export_kbconfig (self):
    kwargs = { "mandatory": self.mandatory, "optional": self.optional }
    if self.evtype == "button":
      kwargs["pointing_button"] = self.evcode
    elif self.evtype == "consumer":
      kwargs["consumer_key_code"] = self.evcode
    else:
      kwargs["key_code"] = self.evcode
    return FromEvent(**kwargs)


class Tosym (object):
  """One event to post, without per-event flags."""
  REGEX_SYM = r"(<[A-Za-z0-9_+]+>|\[[A-Za-z0-9_+]+\]|\([A-Za-z0-9_]+\)|\$[A-Za-z0-9_]+=-?[A-Za-z0-9_]+|'[^']*')"

  def __init__ (self, evtype=None, evcode=None, modifiers=None):
    self.evtype = evtype      # "key", "button", "consumer", "shell", "variable", "notify"
    self.evcode = evcode
    self.modifiers = modifiers or []

  def __str__ (self):
    inner = "+".join(list(self.modifiers) + [ str(self.evcode) ])
    if self.evtype == "key":
      return "<{}>".format(inner)
    elif self.evtype == "button":
      return "[{}]".format(inner)
    elif self.evtype == "consumer":
      return "({})".format(self.evcode)
    elif self.evtype == "shell":
      return "{}{}{}".format("{", self.evcode, "}")
    elif self.evtype == "variable":
      return "${}={}".format(*self.evcode)
    elif self.evtype == "notify":
      return "'{}'".format(self.evcode)
    return str(self.evcode)

  def __repr__ (self):
    return "{}(evtype='{!s}', evcode='{!s}')".format(
      self.__class__.__name__,
      self.evtype,
      self.evcode,
      )

  @staticmethod
  def _split_mods (inner):
    words = inner.split('+')
    mods = []
    for w in words[:-1]:
      mods.extend(expand_modifier(w))
    return (words[-1], mods)

  @staticmethod
  def _parse (s):
    if s[0] == '{' and s[-1] == '}':
      return ("shell", s[1:-1], [])
    if not re.match(Tosym.REGEX_SYM + "$", s):
      return None
    if s[0] == '<':
      code, mods = Tosym._split_mods(s[1:-1])
      return ("key", code, mods)
    elif s[0] == '[':
      code, mods = Tosym._split_mods(s[1:-1])
      return ("button", code, mods)
    elif s[0] == '(':
      return ("consumer", s[1:-1], [])
    elif s[0] == '$':
      name, value = s[1:].split('=', 1)
      return ("variable", (name, _scalar(value)), [])
    elif s[0] == "'":
      return ("notify", s[1:-1], [])
    return None

  @staticmethod
  def parse (s):
    parsed = Tosym._parse(s)
    if parsed is None:
      raise ValueError("Malformed event '{}'".format(s))
    return Tosym(*parsed)

  def export_kbconfig (self, tofrob=None):
    kwargs = tofrob.export_kwargs() if tofrob else {}
    if self.evtype == "key":
      return ToEventFactory.make_key(self.evcode, self.modifiers, **kwargs)
    elif self.evtype == "button":
      return ToEventFactory.make_pointing_button(self.evcode, self.modifiers, **kwargs)
    elif self.evtype == "consumer":
      return ToEventFactory.make_consumer_key(self.evcode, **kwargs)
    elif self.evtype == "shell":
      return ToEventFactory.make_shell(self.evcode, **kwargs)
    elif self.evtype == "variable":
      name, value = self.evcode
      return ToEventFactory.make_set_variable(name, value, **kwargs)
    elif self.evtype == "notify":
      return ToEventFactory.make_notification(NOTIFICATION_ID, self.evcode, **kwargs)
    raise ValueError("Unknown event type '{}'".format(self.evtype))


class Tofrob (object):
  """Per-event flags in a tospec."""
  REGEX_FROB = r"(\*|!|\^|~[0-9]+)"

  def __init__ (self, lazy=None, repeat=None, halt=None, hold_down_milliseconds=None):
    self.lazy = lazy
    self.repeat = repeat
    self.halt = halt
    self.hold_down_milliseconds = hold_down_milliseconds

  def __str__ (self):
    parts = []
    if self.lazy:
      parts.append("*")
    if self.repeat is False:
      parts.append("!")
    if self.halt:
      parts.append("^")
    if self.hold_down_milliseconds is not None:
      parts.append("~{}".format(self.hold_down_milliseconds))
    return "".join(parts)

  def __repr__ (self):
    return "{}(lazy={!r}, repeat={!r}, halt={!r}, hold_down_milliseconds={!r})".format(
      self.__class__.__name__,
      self.lazy,
      self.repeat,
      self.halt,
      self.hold_down_milliseconds)

  def export_kwargs (self):
    retval = {}
    for k in ('lazy', 'repeat', 'halt', 'hold_down_milliseconds'):
      v = getattr(self, k)
      if v is not None:
        retval[k] = v
    return retval

  @staticmethod
  def _parse (s):
    matches = re.findall(Tofrob.REGEX_FROB, s)
    lazy, repeat, halt, hold = (None,)*4
    for m in matches:
      if m == '*':
        lazy = True
      elif m == '!':
        repeat = False
      elif m == '^':
        halt = True
      elif m[0] == '~':
        hold = int(m[1:])
    return (lazy, repeat, halt, hold)

  @staticmethod
  def parse (s):
    return Tofrob(*Tofrob._parse(s))


class Tospec (object):
  """Event specification: combine signal, Tosym list, Tofrob, label."""
  REGEX_SIGNAL = r"[/=_\-:%]"
  REGEX_SYM = Tosym.REGEX_SYM
  REGEX_FROB = Tofrob.REGEX_FROB

  SIGNAL_SLOTS = {
    "/": KB_TO,
    "=": KB_TO_IF_ALONE,
    "_": KB_TO_IF_HELD_DOWN,
    "-": KB_TO_AFTER_KEY_UP,
    ":": KB_TO_IF_INVOKED,
    "%": KB_TO_IF_CANCELED,
    }

  def __init__ (self, actsig=None, tosyms=None, tofrob=None, label=None):
    self.actsig = actsig    # one character of REGEX_SIGNAL
    self.tosyms = tosyms    # list of Tosym instances.
    self.tofrob = tofrob    # Tofrob instance.
    self.label = label      # str

  def __str__ (self):
    return "{}{}{}{}".format(
      self.actsig if self.actsig else "",
      "".join(map(str, self.tosyms)) if self.tosyms else "",
      str(self.tofrob) if self.tofrob else "",
      "#" + self.label.replace(" ", "#") if self.label else "",
      )

  def __repr__ (self):
    return "{}(actsig={!r}, tosyms={!r}, tofrob={!r})".format(
      self.__class__.__name__,
      self.actsig,
      "".join(map(str, self.tosyms)) if self.tosyms else None,
      str(self.tofrob) if self.tofrob else None,
      )

  @staticmethod
  def _parse (s):
    """Split shorthand string into parts: signal, syms, frobs, label."""
    signal = None
    i = 0
    if s and re.match(Tospec.REGEX_SIGNAL, s[0]):
      signal = s[0]
      i = 1
    re_sym = re.compile(Tospec.REGEX_SYM)
    syms = []
    while i < len(s):
      if s[i] == '{':
        j = _match_brace(s, i)
        if j < 0:
          return None
        syms.append(s[i:j+1])
        i = j+1
        continue
      m = re_sym.match(s, i)
      if not m:
        break
      syms.append(m.group(0))
      i = m.end()
    if not syms:
      return None
    rest = s[i:]
    label = None
    hashpos = rest.find('#')
    if hashpos >= 0:
      label = rest[hashpos:]
      rest = rest[:hashpos]
    if rest and not re.fullmatch("{}+".format(Tospec.REGEX_FROB), rest):
      return None
    return (signal, syms, rest or None, label)

  @staticmethod
  def parse (s):
    """Convert _parse() parts into forms passable to Tospec."""
    parsed = Tospec._parse(s)
    if parsed is None:
      raise ValueError("Malformed to-spec '{}'".format(s))
    signal, symspecs, frobspec, label = parsed
    tosyms = [ Tosym.parse(x) for x in symspecs ]
    tofrob = Tofrob.parse(frobspec) if frobspec else None
    if label is not None:
      label = label[1:].replace('#', ' ')
    return Tospec(signal, tosyms, tofrob, label)

  def export_slot (self, default_slot=KB_TO):
    if self.actsig in (None, "/"):
      return default_slot
    return self.SIGNAL_SLOTS[self.actsig]

  def export_kbconfig (self):
    return [ sym.export_kbconfig(self.tofrob) for sym in self.tosyms ]




class LayerCommand (object):
  """Custom way to describe a command in a layer.

Events per slot, plus optional description, conditions and parameters;
becomes a manipulator once a 'from' event is supplied.
"""
  def __init__ (self, to=None, description=None, conditions=None, parameters=None):
    self.description = description
    self.events = OrderedDict()
    self.conditions = list(conditions) if conditions else []
    self.parameters = OrderedDict(parameters) if parameters else OrderedDict()
    if to:
      self.add_events(KB_TO, to)

  def __repr__ (self):
    return "{}(description={!r}, events={!r})".format(
      self.__class__.__name__,
      self.description,
      dict(self.events))

  def add_events (self, slot, events):
    if not isinstance(events, (list, tuple)):
      events = [ events ]
    self.events.setdefault(slot, []).extend(events)

  @property
  def to (self):
    return self.events.get(KB_TO, [])

  def make_manipulator (self, from_event, conditions=()):
    m = Manipulator(from_event.copy(), self.description, parameters=self.parameters)
    for slot, events in self.events.items():
      m.add_events(slot, events)
    for cond in conditions:
      m.add_condition(cond)
    for cond in self.conditions:
      m.add_condition(cond)
    return m


def open_ (what):
  """Shortcut for "open" shell command."""
  return LayerCommand(
    to=[ ToEventFactory.make_shell("open {}".format(what)) ],
    description="Open {}".format(what))


def app (name):
  """Shortcut for "Open an app" command (of which there are a bunch)."""
  return open_("-a '{}.app'".format(name))


def _as_from (spec):
  if isinstance(spec, FromEvent):
    return spec
  if _dictlike(spec):
    return FromEvent.make(spec)
  return Fromspec.parse(spec).export_kbconfig()


def _as_events (spec):
  """Flatten to-events from objects, JSON dicts, LayerCommand, or tospec strings."""
  if spec is None:
    return []
  if isinstance(spec, ToEventBase):
    return [ spec ]
  if isinstance(spec, LayerCommand):
    return list(spec.to)
  if _stringlike(spec):
    retval = []
    for word in split_specs(spec):
      tospec = Tospec.parse(word)
      if tospec.export_slot() != KB_TO:
        raise ValueError("Signal not allowed here: '{}'".format(word))
      retval.extend(tospec.export_kbconfig())
    return retval
  if _dictlike(spec):
    return [ ToEventFactory.make(spec) ]
  retval = []
  for x in spec:
    retval.extend(_as_events(x))
  return retval


def _set_var (name, value):
  return ToEventFactory.make_set_variable(name, value)

def _var_if (name, value):
  return ConditionFactory.make_variable(name, value)




####################
# Hyper sublayers  #
####################


def _sublayer_variable (key, prefix="hyper_sublayer"):
  return "{}_{}".format(prefix, key)


def _is_direct (value):
  return isinstance(value, (LayerCommand, list, tuple))


def create_hyper_sublayer (sublayer_key, commands, all_sublayer_variables,
                           modifiers=HYPER, title="Hyper", prefix="hyper_sublayer"):
  """Create a Hyper key sublayer, where every command is prefixed with a key.
e.g. Hyper + O ("Open") is the "open applications" layer, Hyper + O + G opens Chrome.
"""
  variable = _sublayer_variable(sublayer_key, prefix)

  toggle = Manipulator(
    FromEvent(key_code=sublayer_key, mandatory=modifiers),
    "Toggle {} sublayer {}".format(title, sublayer_key))
  toggle.add_events(KB_TO, _set_var(variable, 1))
  # Variables default to 0, so conditions on 0 hold at startup.
  toggle.add_events(KB_TO_AFTER_KEY_UP, _set_var(variable, 0))
  # Only trigger a sublayer if no other sublayer is active.
  for other in all_sublayer_variables:
    if other != variable:
      toggle.add_condition(_var_if(other, 0))

  manipulators = [ toggle ]
  for command_key, cmd in commands.items():
    entries = cmd if isinstance(cmd, (list, tuple)) else [ cmd ]
    from_event = FromEvent(key_code=command_key, mandatory=["any"])
    for entry in entries:
      manipulators.append(entry.make_manipulator(from_event, [ _var_if(variable, 1) ]))
  return manipulators


def create_hyper_sublayers (sublayers, modifiers=HYPER, title="Hyper", prefix="hyper_sublayer"):
  """Create all hyper sublayers.

Needs all the sublayer variable names at once, so that only one sublayer
activates at a time.
Values are either a command (LayerCommand, or list of them for conditional
entries) mapped directly on Hyper + key, or a mapping of key to command.
"""
  all_variables = [ _sublayer_variable(k, prefix) for k in sublayers.keys() ]

  rules = []
  for key, value in sublayers.items():
    log.debug("expanding sublayer", key=key, title=title)
    if _is_direct(value):
      entries = value if isinstance(value, (list, tuple)) else [ value ]
      hyper_from = FromEvent(key_code=key, mandatory=modifiers)
      rule = Rule("{} Key + {}".format(title, key))
      for entry in entries:
        rule.add_manipulator(entry.make_manipulator(hyper_from))
      rules.append(rule)
    else:
      rules.append(Rule('{} Key sublayer "{}"'.format(title, key),
                        create_hyper_sublayer(key, value, all_variables, modifiers, title, prefix)))
  return rules


def create_right_hyper_sublayers (sublayers):
  """Same as create_hyper_sublayers() on the four right-hand modifiers.

Sublayer variables are named right_hyper_sublayer_{key}, not hyper_sublayer_{key},
so a left and a right sublayer on the same key keep separate state.
Rules carried over from a setup that shared the hyper_sublayer_ names
must rename variable conditions that refer to right-hand sublayers.
"""
  return create_hyper_sublayers(sublayers, RIGHT_HYPER, "Right Hyper", "right_hyper_sublayer")




#####################################
# Tap / hold / double-tap / combos  #
#####################################


def tap_hold_button (from_event, tap=None, hold=None, to=None, conditions=None,
                     alone_timeout=None, held_threshold=None, description=None):
  """One manipulator: 'tap' when pressed alone, 'hold' past the held-down threshold."""
  m = Manipulator(_as_from(from_event), description, conditions)
  m.add_events(KB_TO, _as_events(to))
  m.add_events(KB_TO_IF_ALONE, _as_events(tap))
  m.add_events(KB_TO_IF_HELD_DOWN, _as_events(hold))
  if alone_timeout is not None:
    m.parameters["basic.to_if_alone_timeout_milliseconds"] = alone_timeout
  if held_threshold is not None:
    m.parameters["basic.to_if_held_down_threshold_milliseconds"] = held_threshold
  return m


def double_click_button (from_event, single, double, variable,
                         threshold=DOUBLE_CLICK_MS, conditions=None, description=None):
  """Two manipulators distinguishing single from double press.

The second-press manipulator comes first: it matches only while 'variable'
is set by a first press less than 'threshold' ms ago.
The single action is delayed by 'threshold' and dropped if anything else
is pressed meanwhile.
"""
  from_event = _as_from(from_event)
  conditions = [ ConditionFactory.make(c) for c in (conditions or []) ]

  second = Manipulator(from_event.copy(),
                       "{} (double)".format(description) if description else None,
                       conditions + [ _var_if(variable, 1) ])
  second.add_events(KB_TO, _set_var(variable, 0))
  second.add_events(KB_TO, _as_events(double))

  first = Manipulator(from_event.copy(), description, conditions)
  first.add_events(KB_TO, _set_var(variable, 1))
  first.add_events(KB_TO_IF_INVOKED, _set_var(variable, 0))
  first.add_events(KB_TO_IF_INVOKED, _as_events(single))
  first.add_events(KB_TO_IF_CANCELED, _set_var(variable, 0))
  first.parameters["basic.to_delayed_action_delay_milliseconds"] = threshold
  return [ second, first ]


def button_combo (from_event, variable, tap=None, conditions=None, description=None):
  """Combo modifier: 'variable' is 1 while held; 'tap' when pressed alone."""
  m = Manipulator(_as_from(from_event), description, conditions)
  m.add_events(KB_TO, _set_var(variable, 1))
  m.add_events(KB_TO_AFTER_KEY_UP, _set_var(variable, 0))
  m.add_events(KB_TO_IF_ALONE, _as_events(tap))
  return m


def combo_condition (variable):
  return _var_if(variable, 1)


def create_mode_cycle (from_event, variable, modes, conditions=None, title="Mode"):
  """Cycle 'variable' through 0..len(modes)-1, one manipulator per state.

Leaving the first mode shows a notification naming the current mode;
returning to it clears the notification.
"""
  if len(modes) < 2:
    raise ValueError("Mode cycle needs at least two modes (got {!r})".format(modes))
  from_event = _as_from(from_event)
  conditions = [ ConditionFactory.make(c) for c in (conditions or []) ]
  manipulators = []
  for index, mode in enumerate(modes):
    nextindex = (index + 1) % len(modes)
    text = "{}: {}".format(title, modes[nextindex]) if nextindex else ""
    m = Manipulator(from_event.copy(),
                    "{} {} -> {}".format(title, mode, modes[nextindex]),
                    conditions + [ _var_if(variable, index) ])
    m.add_events(KB_TO, _set_var(variable, nextindex))
    m.add_events(KB_TO, ToEventFactory.make_notification(variable, text))
    manipulators.append(m)
  return manipulators




##############
# Trackball  #
##############


class TrackballButton (object):
  """One button of a multi-button pointing device; raw specs kept for button_map()."""
  def __init__ (self, name, event, tap=None, double=None, hold=None, combo=None, modes=None, description=None):
    self.name = str(name)
    self.event = event
    self.tap = tap
    self.double = double
    self.hold = hold
    self.combo = combo
    self.modes = modes or OrderedDict()
    self.description = description

  def __repr__ (self):
    return "{}(name={!r}, event={!r})".format(self.__class__.__name__, self.name, self.event)


class Trackball (object):
  """Button table for a trackball, expanded into per-button rules.

Manipulator order per button (first match wins):
  1. combo action, while the combo button is held
  2. mode overrides, while the mode variable selects that mode
  3. double/hold/tap behavior
"""
  def __init__ (self, name="trackball", title=None, conditions=None,
                threshold=DOUBLE_CLICK_MS, hold_threshold=HOLD_MS,
                combo_button=None, mode_button=None, modes=None):
    self.name = _sanitize(name)
    self.title = title or str(name)
    self.conditions = list(conditions or [])
    self.threshold = threshold
    self.hold_threshold = hold_threshold
    self.combo_button = combo_button
    self.mode_button = mode_button
    self.modes = list(modes or [])
    self.buttons = []
    # Converts raw specs to to-events; CfgMaker supplies one that knows aliases.
    self.resolve = _as_events

  @property
  def combo_variable (self):
    return "{}_combo".format(self.name)

  @property
  def mode_variable (self):
    return "{}_mode".format(self.name)

  def press_variable (self, button):
    return "{}_{}_pressed".format(self.name, _sanitize(button.name))

  def add_button (self, button):
    self.buttons.append(button)
    return button

  def get_button (self, name):
    for b in self.buttons:
      if b.name == name:
        return b
    return None

  def _check (self):
    if self.combo_button and not self.get_button(self.combo_button):
      raise ValueError("Combo button '{}' not in button table".format(self.combo_button))
    if self.mode_button:
      if not self.get_button(self.mode_button):
        raise ValueError("Mode button '{}' not in button table".format(self.mode_button))
      if len(self.modes) < 2:
        raise ValueError("Mode button '{}' needs at least two modes".format(self.mode_button))

  def export_button (self, button):
    from_event = _as_from(button.event)
    conds = list(self.conditions)
    manipulators = []

    if button.combo is not None and button.name != self.combo_button:
      if not self.combo_button:
        raise ValueError("Button '{}' has a combo but no combo button is set".format(button.name))
      m = Manipulator(from_event.copy(),
                      "{} + {}".format(self.combo_button, button.name),
                      conds + [ combo_condition(self.combo_variable) ])
      m.add_events(KB_TO, self.resolve(button.combo))
      manipulators.append(m)

    for mode, spec in button.modes.items():
      if mode not in self.modes:
        raise ValueError("Button '{}' refers to unknown mode '{}'".format(button.name, mode))
      m = Manipulator(from_event.copy(),
                      "{} in {} mode".format(button.name, mode),
                      conds + [ _var_if(self.mode_variable, self.modes.index(mode)) ])
      m.add_events(KB_TO, self.resolve(spec))
      manipulators.append(m)

    if button.double is not None and button.hold is not None:
      raise ValueError("Button '{}' cannot have both double and hold".format(button.name))

    if button.name == self.combo_button:
      if button.double is not None or button.hold is not None:
        raise ValueError("Combo button '{}' supports tap only".format(button.name))
      manipulators.append(button_combo(from_event, self.combo_variable,
                                       self.resolve(button.tap), conds, button.name))
    elif button.name == self.mode_button:
      if button.tap is not None or button.double is not None or button.hold is not None:
        raise ValueError("Mode button '{}' only cycles modes".format(button.name))
      manipulators.extend(create_mode_cycle(from_event, self.mode_variable, self.modes, conds, self.title))
    elif button.double is not None:
      manipulators.extend(double_click_button(from_event,
                                              self.resolve(button.tap),
                                              self.resolve(button.double),
                                              self.press_variable(button),
                                              self.threshold, conds, button.name))
    elif button.hold is not None:
      manipulators.append(tap_hold_button(from_event,
                                          tap=self.resolve(button.tap),
                                          hold=self.resolve(button.hold),
                                          conditions=conds,
                                          held_threshold=self.hold_threshold,
                                          description=button.name))
    elif button.tap is not None:
      manipulators.append(Manipulator(from_event.copy(), button.name, conds,
                                      to=self.resolve(button.tap)))
    return manipulators

  def export_rules (self):
    self._check()
    rules = []
    for button in self.buttons:
      manipulators = self.export_button(button)
      if not manipulators:
        continue
      desc = "[{}] {}".format(self.title, button.name)
      if button.description:
        desc = "{} - {}".format(desc, button.description)
      rules.append(Rule(desc, manipulators))
    return rules

  def button_map (self):
    """Button table as plain records, for documentation."""
    def _show (x):
      if x is None:
        return ""
      if _stringlike(x):
        return x
      return kbjson.dumps(kbconfig.toJSON(x)).strip()
    retval = []
    for b in self.buttons:
      entry = OrderedDict()
      entry['name'] = b.name
      entry['event'] = _show(b.event)
      if b.name == self.mode_button:
        entry['tap'] = "cycle mode ({})".format(", ".join(self.modes))
      else:
        entry['tap'] = _show(b.tap)
      entry['doubleTap'] = _show(b.double)
      entry['hold'] = "combo modifier" if b.name == self.combo_button else _show(b.hold)
      entry['b2Combo'] = _show(b.combo)
      retval.append(entry)
    return retval




class CfgMaker (object):
  r"""
title:
global:
parameters:
aliases:
apps:
devices:
rules:
  description:
  manipulators:
    from: <Fromspec>
    to: <Tospec>+
hyper:
right_hyper:
trackball:
"""
  SECTIONS = ('rules', 'hyper', 'right_hyper', 'trackball')
  COMMAND_KEYS = set([
    'to', 'app', 'open', 'description', 'when', 'conditions', 'parameters',
    KB_TO_IF_ALONE, KB_TO_IF_HELD_DOWN, KB_TO_AFTER_KEY_UP, KB_TO_DELAYED_ACTION,
    ])

  def __init__ (self):
    self.name = "Default"
    self.selected = None
    self.global_settings = OrderedDict()
    self.parameters = kbconfig.Parameters()
    self.aliases = {}
    self.apps = {}
    self.devices = {}
    self.order = list(self.SECTIONS)
    self.sections = OrderedDict()
    for s in self.SECTIONS:
      self.sections[s] = []
    self.trackball = None

  def load (self, py_dict):
    for k in ('aliases', 'apps', 'devices'):
      if k in py_dict:
        getattr(self, "load_{}".format(k))(_mapping(py_dict[k], k))

    for k,v in py_dict.items():
      if k in ('name', 'title', 'profile'):
        self.name = str(v)
      elif k == 'selected':
        self.selected = bool(v)
      elif k == 'global':
        self.global_settings.update(_mapping(v, k))
      elif k == 'parameters':
        for pk, pv in _mapping(v, k).items():
          self.parameters[pk] = pv
      elif k == 'order':
        for s in _sequence(v, k):
          if s not in self.SECTIONS:
            raise ValueError("Unknown section '{}' in order".format(s))
        self.order = list(v)
      elif k == 'rules':
        for rule_dict in _sequence(v, k):
          self.sections['rules'].append(self.make_rule(rule_dict))
      elif k == 'hyper':
        self.sections['hyper'].extend(self.load_hyper(_mapping(v, k)))
      elif k == 'right_hyper':
        self.sections['right_hyper'].extend(self.load_hyper(_mapping(v, k), right=True))
      elif k == 'trackball':
        if v is None:
          continue
        self.trackball = self.load_trackball(_mapping(v, k))
        self.sections['trackball'].extend(self.trackball.export_rules())
      elif k not in ('aliases', 'apps', 'devices'):
        raise ValueError("Unknown section '{}'".format(k))

  def load_aliases (self, py_dict):
    for k,v in py_dict.items():
      self.aliases[str(k)] = v

  def load_apps (self, py_dict):
    for k,v in py_dict.items():
      self.apps[str(k)] = [ v ] if _stringlike(v) else list(_sequence(v, "app group '{}'".format(k)))

  def load_devices (self, py_dict):
    for k,v in py_dict.items():
      self.devices[str(k)] = [ v ] if _dictlike(v) else list(_sequence(v, "device '{}'".format(k)))

  # Conditions.

  def make_condition (self, spec):
    if isinstance(spec, ConditionBase) or _dictlike(spec):
      return ConditionFactory.make(spec)
    if not _stringlike(spec):
      raise ValueError("Malformed condition {!r}".format(spec))
    negate = False
    if spec.startswith('!'):
      negate, spec = True, spec[1:]
    kind, sep, arg = spec.partition(':')
    if not sep:
      raise ValueError("Malformed condition '{}'".format(spec))
    if kind == 'app':
      if arg in self.apps:
        return ConditionFactory.make_frontmost_app(self.apps[arg], negate)
      if arg.startswith('^'):
        return ConditionFactory.make_frontmost_app([ arg ], negate)
      raise ValueError("Unknown app group '{}'".format(arg))
    elif kind == 'device':
      if arg not in self.devices:
        raise ValueError("Unknown device '{}'".format(arg))
      return ConditionFactory.make_device(self.devices[arg], negate)
    elif kind == 'var':
      name, sep, value = arg.partition('=')
      if not sep:
        raise ValueError("Malformed variable condition '{}'".format(spec))
      return ConditionFactory.make_variable(name, _scalar(value), negate)
    raise ValueError("Unknown condition kind '{}'".format(kind))

  def make_conditions (self, specs):
    if specs is None:
      return []
    if _stringlike(specs) or _dictlike(specs):
      specs = [ specs ]
    return [ self.make_condition(s) for s in _sequence(specs, "Conditions") ]

  # Events.

  def make_from (self, spec):
    if isinstance(spec, (int, float)) and not isinstance(spec, bool):
      spec = str(spec)
    return _as_from(spec)

  def parse_events (self, spec, default_slot=KB_TO, label_sink=None, expanding=()):
    """Resolve spec into list of (slot, [ToEvent]).

label_sink: list that collects '#labels' found in tospecs.
expanding: aliases being expanded, outermost first.
"""
    retval = []
    if spec is None:
      return retval
    if isinstance(spec, ToEventBase):
      return [ (default_slot, [ spec ]) ]
    if _dictlike(spec):
      return [ (default_slot, [ ToEventFactory.make(spec) ]) ]
    if not _stringlike(spec):
      for x in _sequence(spec, "Event list"):
        retval.extend(self.parse_events(x, default_slot, label_sink, expanding))
      return retval
    for word in split_specs(spec):
      m = re.match(r"^\$\{?([A-Za-z0-9_]+)\}?$", word)
      if m:
        term = m.group(1)
        if term not in self.aliases:
          raise ValueError("Unknown alias '{}'".format(term))
        if term in expanding:
          raise ValueError("Alias cycle: {}".format(" -> ".join(expanding + (term,))))
        retval.extend(self.parse_events(self.aliases[term], default_slot, label_sink, expanding + (term,)))
        continue
      tospec = Tospec.parse(word)
      if tospec.label and label_sink is not None:
        label_sink.append(tospec.label)
      retval.append( (tospec.export_slot(default_slot), tospec.export_kbconfig()) )
    return retval

  def make_events (self, spec):
    """Plain event list; every event must belong to the 'to' slot."""
    retval = []
    for slot, events in self.parse_events(spec):
      if slot != KB_TO:
        raise ValueError("Signal not allowed here: {!r}".format(spec))
      retval.extend(events)
    return retval

  def _is_command (self, v):
    return _dictlike(v) and any(k in self.COMMAND_KEYS for k in v.keys())

  @staticmethod
  def _check_keys (py_dict, allowed, what):
    unknown = [ str(k) for k in py_dict.keys() if k not in allowed ]
    if unknown:
      raise ValueError("Unknown key(s) {} in {}: {!r}".format(", ".join(unknown), what, py_dict))

  def make_command (self, spec, allowed=()):
    """Build LayerCommand (or list of them) from string, dict, or list.

allowed: further dict keys the caller consumes itself (e.g. 'from').
A command must post at least one event; an empty one would swallow its key.
"""
    if isinstance(spec, LayerCommand):
      return spec
    if isinstance(spec, (list, tuple)):
      return [ self.make_command(x, allowed) for x in spec ]
    cmd = self._make_command(spec, allowed)
    if not any(cmd.events.values()):
      raise ValueError("Command posts no events: {!r}".format(spec))
    return cmd

  def _make_command (self, spec, allowed):
    if _stringlike(spec):
      if spec.startswith("app:"):
        return app(spec[4:].strip())
      if spec.startswith("open:"):
        return open_(spec[5:].strip())
      labels = []
      cmd = LayerCommand()
      for slot, events in self.parse_events(spec, KB_TO, labels):
        cmd.add_events(slot, events)
      if labels:
        cmd.description = " ".join(labels)
      return cmd
    if not _dictlike(spec):
      raise ValueError("Cannot make command from {!r}".format(spec))
    self._check_keys(spec, self.COMMAND_KEYS | set(allowed), "command")
    delayed = _mapping(spec.get(KB_TO_DELAYED_ACTION), KB_TO_DELAYED_ACTION)
    self._check_keys(delayed, (KB_TO_IF_INVOKED, KB_TO_IF_CANCELED), KB_TO_DELAYED_ACTION)

    if 'app' in spec:
      cmd = app(spec['app'])
    elif 'open' in spec:
      cmd = open_(spec['open'])
    else:
      cmd = LayerCommand()
    labels = []
    for slot in (KB_TO, KB_TO_IF_ALONE, KB_TO_IF_HELD_DOWN, KB_TO_AFTER_KEY_UP):
      for evslot, events in self.parse_events(spec.get(slot), slot, labels):
        cmd.add_events(evslot, events)
    for slot in (KB_TO_IF_INVOKED, KB_TO_IF_CANCELED):
      for evslot, events in self.parse_events(delayed.get(slot), slot, labels):
        cmd.add_events(evslot, events)
    if 'description' in spec:
      cmd.description = spec['description']
    elif labels:
      cmd.description = " ".join(labels)
    cmd.conditions.extend(self.make_conditions(spec.get('when')))
    cmd.conditions.extend(self.make_conditions(spec.get('conditions')))
    if spec.get('parameters'):
      cmd.parameters.update(_mapping(spec['parameters'], 'parameters'))
    return cmd

  # Rules.

  DOUBLE_KEYS = ('from', 'single', 'double', 'variable', 'threshold', 'description', 'when', 'conditions')
  HOLD_KEYS = ('from', 'tap', 'hold', 'to', 'threshold', 'description', 'when', 'conditions')

  def make_manipulators (self, py_dict, conditions=()):
    if not _dictlike(py_dict):
      raise ValueError("Manipulator must be a mapping (got {!r})".format(py_dict))
    if 'from' not in py_dict:
      raise ValueError("Manipulator without 'from': {!r}".format(py_dict))
    if 'double' in py_dict and 'hold' in py_dict:
      raise ValueError("Manipulator cannot have both double and hold: {!r}".format(py_dict))
    if 'double' in py_dict:
      self._check_keys(py_dict, self.DOUBLE_KEYS, "double-tap manipulator")
    elif 'hold' in py_dict:
      self._check_keys(py_dict, self.HOLD_KEYS, "tap/hold manipulator")
    elif 'tap' in py_dict:
      raise ValueError("'tap' needs 'hold': {!r}".format(py_dict))
    elif 'single' in py_dict:
      raise ValueError("'single' needs 'double': {!r}".format(py_dict))
    from_event = self.make_from(py_dict['from'])
    conditions = list(conditions)
    description = py_dict.get('description')

    if 'double' in py_dict or 'hold' in py_dict:
      own = conditions + self.make_conditions(py_dict.get('when')) + self.make_conditions(py_dict.get('conditions'))
      if 'double' in py_dict:
        code = from_event.key_code or from_event.pointing_button or from_event.consumer_key_code
        variable = py_dict.get('variable') or "{}_pressed".format(_sanitize(code))
        return double_click_button(from_event,
                                   self.make_events(py_dict.get('single')),
                                   self.make_events(py_dict['double']),
                                   variable,
                                   py_dict.get('threshold', DOUBLE_CLICK_MS),
                                   own, description)
      return [ tap_hold_button(from_event,
                               tap=self.make_events(py_dict.get('tap')),
                               hold=self.make_events(py_dict['hold']),
                               to=self.make_events(py_dict.get('to')),
                               conditions=own,
                               held_threshold=py_dict.get('threshold'),
                               description=description) ]

    cmd = self.make_command(py_dict, allowed=('from',))
    return [ cmd.make_manipulator(from_event, conditions) ]

  def make_rule (self, py_dict):
    if not _dictlike(py_dict):
      raise ValueError("Rule must be a mapping (got {!r})".format(py_dict))
    description = py_dict.get('description')
    if not description:
      raise ValueError("Rule without description: {!r}".format(py_dict))
    conditions = self.make_conditions(py_dict.get('when'))
    rule = Rule(description)
    if 'manipulators' in py_dict:
      self._check_keys(py_dict, ('description', 'when', 'manipulators'), "rule")
      for m in _sequence(py_dict['manipulators'], 'manipulators'):
        for manip in self.make_manipulators(m, conditions):
          rule.add_manipulator(manip)
    else:
      # Single-manipulator rule: the rule's description is not repeated.
      single = OrderedDict((k,v) for k,v in py_dict.items() if k not in ('description', 'when'))
      for manip in self.make_manipulators(single, conditions):
        rule.add_manipulator(manip)
    return rule

  def load_hyper (self, py_dict, right=False):
    sublayers = OrderedDict()
    for k,v in py_dict.items():
      key = _keyname(k)
      if _stringlike(v) or isinstance(v, list) or self._is_command(v):
        sublayers[key] = self.make_command(v)
      elif not _dictlike(v):
        raise ValueError("Hyper key '{}' needs a command or sublayer (got {!r})".format(key, v))
      else:
        layer = OrderedDict()
        for ck, cv in v.items():
          layer[_keyname(ck)] = self.make_command(cv)
        sublayers[key] = layer
    if right:
      return create_right_hyper_sublayers(sublayers)
    return create_hyper_sublayers(sublayers)

  TRACKBALL_KEYS = ('name', 'title', 'device', 'when', 'threshold', 'hold_threshold',
                    'combo_button', 'mode_button', 'modes', 'buttons')
  BUTTON_KEYS = ('name', 'event', 'tap', 'double', 'hold', 'combo', 'modes', 'description')

  def load_trackball (self, py_dict):
    self._check_keys(py_dict, self.TRACKBALL_KEYS, "trackball")
    conditions = []
    if py_dict.get('device'):
      conditions.append(self.make_condition("device:{}".format(py_dict['device'])))
    conditions.extend(self.make_conditions(py_dict.get('when')))
    tb = Trackball(
      name=py_dict.get('name', "trackball"),
      title=py_dict.get('title'),
      conditions=conditions,
      threshold=py_dict.get('threshold', DOUBLE_CLICK_MS),
      hold_threshold=py_dict.get('hold_threshold', HOLD_MS),
      combo_button=py_dict.get('combo_button'),
      mode_button=py_dict.get('mode_button'),
      modes=py_dict.get('modes'))
    tb.resolve = self.make_events
    for b in _sequence(py_dict.get('buttons'), 'buttons'):
      if not _dictlike(b) or 'name' not in b or 'event' not in b:
        raise ValueError("Trackball button needs name and event: {!r}".format(b))
      self._check_keys(b, self.BUTTON_KEYS, "trackball button")
      event = b['event']
      if not _dictlike(event):
        event = str(event)
      modes = OrderedDict((str(k), v) for k,v in _mapping(b.get('modes'), 'modes').items())
      tb.add_button(TrackballButton(
        b['name'], event,
        b.get('tap'), b.get('double'), b.get('hold'), b.get('combo'),
        modes, b.get('description')))
    return tb

  def export_kbconfig (self, kbcfg=None):
    if kbcfg is None:
      kbcfg = KarabinerConfig()
    kbcfg.global_settings.update(self.global_settings)
    profile = Profile(self.name, self.selected, parameters=self.parameters)
    for section in self.order:
      for rule in self.sections[section]:
        profile.add_rule(rule)
    kbcfg.profiles.append(profile)
    return kbcfg

  def button_map (self):
    return self.trackball.button_map() if self.trackball else []




DEFAULT_INPUT = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "karabiner.yaml")
DEFAULT_OUTPUT = "karabiner.json"
INSTALL_PATH = os.path.join("~", ".config", "karabiner", "karabiner.json")


def cli (argv):
  parser = argparse.ArgumentParser(
    description="Generate Karabiner-Elements configuration from shorthand YAML.")
  parser.add_argument('-i', '--input', metavar='FILE', nargs=1,
                      help='Input configuration file, - for stdin [karabiner.yaml]')
  parser.add_argument('-f', '--format', metavar='FMT', type=str, nargs=1,
                      help='Expected format of input config file [yaml]')
  parser.add_argument('-o', '--output', metavar='FILE', action='append',
                      help='Output JSON file, - for stdout; repeatable [karabiner.json]')
  parser.add_argument('--install', action='store_true',
                      help='Also merge into ~/.config/karabiner/karabiner.json')
  parser.add_argument('--profile', metavar='NAME', nargs=1,
                      help='Profile name to generate/replace')
  parser.add_argument('--button-map', metavar='FILE', nargs=1,
                      help='Write trackball button table as JSON')
  parser.add_argument('-v', '--verbose', action='store_true',
                      help='Debug logging')
  parser.add_argument('--log-json', action='store_true',
                      help='Log as JSON lines')

  args = parser.parse_args(argv[1:])
  kblog.configure_logging(verbose=args.verbose, log_json=args.log_json)

  srcname = args.input[-1] if args.input else DEFAULT_INPUT
  dstnames = args.output if args.output else [ DEFAULT_OUTPUT ]
  fmt = args.format[-1] if args.format else None

  try:
    if fmt not in ('yaml', None):
      raise ValueError("Unsupported input format '{}'".format(fmt))
    if srcname == '-':
      cfg = yaml.safe_load(sys.stdin)
    else:
      with open(srcname, "rt", encoding="utf-8") as infile:
        cfg = yaml.safe_load(infile)
    if not _dictlike(cfg):
      raise ValueError("Input {} is not a mapping".format(srcname))

    cfgmaker = CfgMaker()
    cfgmaker.load(cfg)
    if args.profile:
      cfgmaker.name = args.profile[-1]
    kbcfg = cfgmaker.export_kbconfig()
    store = kbcfg.encode_kv()

    merge_paths = []
    if args.install:
      install_path = os.path.expanduser(INSTALL_PATH)
      dstnames = dstnames + [ install_path ]
      merge_paths.append(install_path)

    filenames = [ p for p in dstnames if p != '-' ]
    if '-' in dstnames:
      kbjson.dump(store, sys.stdout)
    for path in kbjson.write_targets(store, filenames, merge_paths, cfgmaker.name):
      log.info("wrote configuration", path=path, rules=len(kbcfg.profiles[0].rules))

    if args.button_map:
      with open(args.button_map[-1], "wt", encoding="utf-8") as outfile:
        kbjson.dump(cfgmaker.button_map(), outfile)
      log.info("wrote button map", path=args.button_map[-1])
  except (ValueError, yaml.YAMLError, OSError) as e:
    log.error("generation failed", error=str(e))
    return 1

  return 0


def main ():
  sys.exit(cli(sys.argv))


if __name__ == "__main__":
  errcode = cli(sys.argv)
  sys.exit(errcode)
