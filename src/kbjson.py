#!/usr/bin/env python3
# encoding=utf-8

# JSON reader/writer for karabiner.json.
#
# Karabiner-Elements rewrites its own file with 2-space indentation;
# output here matches so diffs stay small.

import json
import os
from collections import OrderedDict


INDENT = 2


def _encode_default (obj):
  """Hook for json: model objects encode themselves."""
  try:
    encoder = obj.encode_kv
  except AttributeError:
    raise TypeError("Object of type {} is not JSON serializable".format(obj.__class__.__name__))
  return encoder()


def _dictlike (x):
  try: x.items
  except AttributeError: return False
  else: return True


def dumps (store):
  """Dump store (dict, list, or object with encode_kv()) as JSON text."""
  s = json.dumps(store, indent=INDENT, ensure_ascii=False, default=_encode_default)
  return s + "\n"

def dump (store, f):
  f.write(dumps(store))


def loads (s):
  return json.loads(s, object_pairs_hook=OrderedDict)

def load (srcstream):
  return json.load(srcstream, object_pairs_hook=OrderedDict)




def merge_profile (existing, generated, profile_name="Default"):
  """Replace complex_modifications of one profile in an existing configuration.

'existing' and 'generated' are plain data (as from load()).
Everything else in 'existing' is preserved: other profiles, devices,
simple_modifications, global settings.
If 'existing' lacks the profile, the generated one is appended.
"""
  if not _dictlike(existing):
    raise ValueError("Existing configuration is not an object ({})".format(type(existing).__name__))
  if not _dictlike(generated):
    raise ValueError("Generated configuration is not an object ({})".format(type(generated).__name__))

  gen_profile = None
  for p in generated.get('profiles', []):
    if p.get('name') == profile_name:
      gen_profile = p
      break
  if gen_profile is None:
    raise ValueError("Generated configuration has no profile '{}'".format(profile_name))

  merged = OrderedDict(existing)
  profiles = [ OrderedDict(p) for p in existing.get('profiles', []) ]
  for p in profiles:
    if p.get('name') == profile_name:
      p['complex_modifications'] = gen_profile.get('complex_modifications', OrderedDict())
      break
  else:
    profiles.append(OrderedDict(gen_profile))
  merged['profiles'] = profiles
  if 'global' not in merged and 'global' in generated:
    merged['global'] = generated['global']
  return merged


def _ensure_parent (path):
  parent = os.path.dirname(os.path.abspath(path))
  if not os.path.isdir(parent):
    os.makedirs(parent)


def write_targets (store, paths, merge_paths=(), profile_name="Default"):
  """Write the same document to each path.

Paths listed in 'merge_paths' are merged into the configuration already there
(see merge_profile()), other paths are overwritten.
Returns list of paths written.
"""
  data = json.loads(json.dumps(store, default=_encode_default), object_pairs_hook=OrderedDict)
  written = []
  for path in paths:
    doc = data
    if path in merge_paths and os.path.exists(path):
      with open(path, "rt", encoding="utf-8") as infile:
        existing = load(infile)
      doc = merge_profile(existing, data, profile_name)
    _ensure_parent(path)
    with open(path, "wt", encoding="utf-8") as outfile:
      dump(doc, outfile)
    written.append(path)
  return written




if __name__ == "__main__":
  import sys
  pyobj = load(sys.stdin)
  dump(pyobj, sys.stdout)
